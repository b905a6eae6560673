#tests\test_config_document.py

"""Test configuration document transforms."""

import pytest

from deployment_engine.autowiring.config_document import (
    app_setting_entries,
    apply_application_variables,
    parse_document,
    render_template,
    resolve_connections,
    substitute_service_markers,
)
from deployment_engine.autowiring.templates import DEFAULT_TEMPLATES, merge_templates
from deployment_engine.core.errors import DeploymentValidationError
from deployment_engine.core.models import (
    ERROR_LOG_FILE_KEY,
    LOG_FILE_KEY,
    ApplicationVariable,
    ServiceBinding,
)


DOCUMENT = """<?xml version="1.0" encoding="utf-8"?>
<configuration>
  <appSettings>
    <add key="A" value="old" />
    <add key="Keep" value="kept" />
  </appSettings>
  <system.web />
</configuration>
"""


@pytest.fixture
def mssql():
    return ServiceBinding(
        label="mssql", name="orders", host="db.local", port=1433,
        instance_name="Orders", user="sa", password="p@ss",
    )


class TestServiceMarkers:
    """Test service marker resolution and substitution."""

    def test_render_template(self, mssql):
        rendered = render_template("{host}:{port}/{name}?u={user}&p={password}", mssql)
        assert rendered == "db.local:1433/Orders?u=sa&p=p@ss"

    def test_resolve_uses_label_template(self, mssql):
        connections = resolve_connections([mssql], DEFAULT_TEMPLATES)

        assert list(connections) == ["{mssql#orders}"]
        assert connections["{mssql#orders}"].startswith("Data Source=db.local,1433;Initial Catalog=Orders;")

    def test_unknown_label_skipped(self):
        service = ServiceBinding(label="cassandra", name="x", host="h", port=1)
        assert resolve_connections([service], DEFAULT_TEMPLATES) == {}

    def test_insertion_order_kept(self, mssql):
        redis = ServiceBinding(label="redis", name="cache", host="r", port=6379)
        connections = resolve_connections([redis, mssql], DEFAULT_TEMPLATES)

        assert list(connections) == ["{redis#cache}", "{mssql#orders}"]

    def test_substitute_replaces_every_occurrence(self):
        text = "<a x='{redis#cache}'/><b y='{redis#cache}'/>"
        result = substitute_service_markers(text, {"{redis#cache}": "r:6379"})

        assert result == "<a x='r:6379'/><b y='r:6379'/>"

    def test_unmatched_markers_left_alone(self):
        text = "<a x='{mysql#other}'/>"
        assert substitute_service_markers(text, {"{redis#cache}": "r"}) == text

    def test_merge_templates_overrides(self):
        merged = merge_templates({"redis": "custom"}, None, {"custom": "{host}"})

        assert merged["redis"] == "custom"
        assert merged["custom"] == "{host}"
        assert merged["mssql"] == DEFAULT_TEMPLATES["mssql"]


class TestApplicationVariables:
    """Test appSettings upserts."""

    def test_existing_key_replaced_in_place(self):
        result = apply_application_variables(DOCUMENT, [ApplicationVariable("A", "new")], "/l/app.log", "/l/err.log")

        assert app_setting_entries(result) == [
            ("A", "new"),
            ("Keep", "kept"),
            (LOG_FILE_KEY, "/l/app.log"),
            (ERROR_LOG_FILE_KEY, "/l/err.log"),
        ]

    def test_new_key_appended(self):
        result = apply_application_variables(DOCUMENT, [ApplicationVariable("B", "1")], "l", "e")
        keys = [key for key, _ in app_setting_entries(result)]

        assert keys.index("B") == 2

    def test_idempotent(self):
        variables = [ApplicationVariable("A", "new"), ApplicationVariable("B", "1")]

        once = apply_application_variables(DOCUMENT, variables, "l", "e")
        twice = apply_application_variables(once, variables, "l", "e")

        assert app_setting_entries(once) == app_setting_entries(twice)
        assert once == twice

    def test_duplicate_keys_collapsed(self):
        document = (
            "<configuration><appSettings>"
            '<add key="A" value="1" /><add key="X" value="x" /><add key="A" value="2" />'
            "</appSettings></configuration>"
        )
        result = apply_application_variables(document, [ApplicationVariable("A", "3")], "l", "e")

        assert app_setting_entries(result)[:2] == [("A", "3"), ("X", "x")]
        assert [key for key, _ in app_setting_entries(result)].count("A") == 1

    def test_caller_supplied_reserved_key_wins(self):
        variables = [ApplicationVariable(LOG_FILE_KEY, "/custom.log")]
        result = apply_application_variables(DOCUMENT, variables, "/ctrl/app.log", "/ctrl/err.log")
        entries = dict(app_setting_entries(result))

        assert entries[LOG_FILE_KEY] == "/custom.log"
        assert entries[ERROR_LOG_FILE_KEY] == "/ctrl/err.log"

    def test_missing_app_settings_created_first(self):
        document = "<configuration><system.web /><connectionStrings /></configuration>"
        result = apply_application_variables(document, [ApplicationVariable("A", "1")], "l", "e")
        root = parse_document(result)

        assert root[0].tag == "appSettings"
        assert app_setting_entries(result) == [("A", "1"), (LOG_FILE_KEY, "l"), (ERROR_LOG_FILE_KEY, "e")]

    def test_other_sections_preserved(self):
        result = apply_application_variables(DOCUMENT, [], "l", "e")

        assert parse_document(result).find("system.web") is not None
        assert result.startswith('<?xml version="1.0" encoding="utf-8"?>')

    def test_comments_preserved(self):
        document = "<configuration><!-- keep me --><appSettings /></configuration>"
        result = apply_application_variables(document, [], "l", "e")

        assert "<!-- keep me -->" in result
        assert not result.startswith("<?xml")

    def test_leading_comments_and_instructions_kept(self):
        document = (
            '<?xml version="1.0"?>\n'
            "<!-- generated by the build -->\n"
            '<?xml-stylesheet href="c.xsl"?>\n'
            "<configuration><appSettings /></configuration>"
        )
        result = apply_application_variables(document, [], "l", "e")

        assert result.startswith('<?xml version="1.0"?>\n<!-- generated by the build -->')
        assert '<?xml-stylesheet href="c.xsl"?>' in result
        assert result.count("generated by the build") == 1

    def test_byte_order_mark_tolerated(self):
        result = apply_application_variables("\ufeff" + DOCUMENT, [], "l", "e")
        assert dict(app_setting_entries(result))["Keep"] == "kept"

    def test_wrong_root_rejected(self):
        with pytest.raises(DeploymentValidationError):
            apply_application_variables("<settings />", [], "l", "e")
