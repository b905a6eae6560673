#deployment_engine\core\validation.py
from deployment_engine.core.errors import DeploymentValidationError


# Characters that are illegal in an OS account name
ILLEGAL_ACCOUNT_CHARS = frozenset('/\\[]:;|=,+*?><@')


def sanitize_name(value: str) -> str:
    """Strip characters that are illegal in an account name."""
    if not value:
        raise DeploymentValidationError("name must not be null or empty")

    return "".join(ch for ch in value if ch not in ILLEGAL_ACCOUNT_CHARS)


def build_identifier(name: str, port: int) -> str:
    """Hosting unit / process pool name for an application."""
    return f"{sanitize_name(name)}{int(port)}"


def validate_port(port: int) -> None:
    if not isinstance(port, int) or isinstance(port, bool):
        raise DeploymentValidationError("port must be an integer")

    if not 0 < port < 65536:
        raise DeploymentValidationError(f"port {port} out of range")
