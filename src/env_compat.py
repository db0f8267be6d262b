import os

THREADS_ENV = "PYSCF_JSON_THREADS"
EVENT_LOG_ENV = "PYSCF_JSON_EVENT_LOG"
VERBOSE_ENV = "PYSCF_JSON_VERBOSE"


def getenv(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value


def env_truthy(name: str) -> bool:
    value = getenv(name)
    if value is None:
        return False
    return value.strip().lower() in ("1", "true", "yes", "on")


def env_int(name: str, default: int | None = None) -> int | None:
    value = getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}.") from exc
