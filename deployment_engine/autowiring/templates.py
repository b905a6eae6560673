# deployment_engine/autowiring/templates.py
"""Connection string templates, keyed by service label."""

from typing import Dict, Mapping, Optional

PLACEHOLDERS = ("{host}", "{port}", "{name}", "{user}", "{password}")


DEFAULT_TEMPLATES: Dict[str, str] = {
    "mssql": (
        "Data Source={host},{port};Initial Catalog={name};"
        "User Id={user};Password={password};MultipleActiveResultSets=true"
    ),
    "mysql": "Server={host};Port={port};Database={name};Uid={user};Pwd={password};",
    "postgresql": "Host={host};Port={port};Database={name};Username={user};Password={password}",
    "redis": "{host}:{port},password={password}",
    "mongodb": "mongodb://{user}:{password}@{host}:{port}/{name}",
}


def merge_templates(*tables: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Merge template tables; later tables override earlier labels."""
    merged: Dict[str, str] = dict(DEFAULT_TEMPLATES)
    for table in tables:
        if table:
            merged.update(table)
    return merged
