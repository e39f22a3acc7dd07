import os

from dotenv import find_dotenv, load_dotenv

from budget_categorizer.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_OPENROUTER_TIMEOUT = 30.0
DEFAULT_CATEGORIES_CACHE_TTL = 300.0
DEFAULT_CATEGORIES_LOCALE = "pl"
DEFAULT_MAX_CONCURRENCY = 4

_CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "OPENROUTER_API_KEY",
    "OPENROUTER_BASE_URL",
    "OPENROUTER_MODEL",
    "OPENROUTER_FALLBACK_MODELS",
    "OPENROUTER_TIMEOUT",
    "SUPABASE_URL",
    "SUPABASE_KEY",
    "CATEGORIES_CACHE_TTL",
    "CATEGORIES_LOCALE",
    "CATEGORIZATION_MAX_CONCURRENCY",
)

_SENSITIVE_MARKERS = ("KEY", "TOKEN", "SECRET", "PASSWORD", "AUTH")

_config_path: str | None = None
_config_values: dict[str, str] = {}


def _dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    return find_dotenv(usecwd=True) or None


def _config_file_path() -> str:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return os.path.join(config_dir, CONFIG_FILENAME)
    nested = os.path.join(os.getcwd(), "config", CONFIG_FILENAME)
    if os.path.exists(nested):
        return nested
    return os.path.join(os.getcwd(), CONFIG_FILENAME)


def _clean_value(raw: str) -> str:
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    # Unquoted values may carry a trailing "# comment".
    return value.split(" #", 1)[0].strip()


def read_config_file(path: str | None) -> dict[str, str]:
    """Read a flat ``KEY: value`` file. Nested YAML structures are not supported."""
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#") or ":" not in stripped:
                continue
            key, raw_value = stripped.split(":", 1)
            key = key.strip()
            value = _clean_value(raw_value)
            if key and value:
                values[key] = value
    return values


def load_environment() -> None:
    """Populate os.environ from .env and config.yaml without overriding real variables."""
    global _config_path
    global _config_values

    dotenv_path = _dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    _config_path = _config_file_path()
    _config_values = read_config_file(_config_path)
    for key in _CONFIG_KEYS:
        if key not in os.environ and key in _config_values:
            os.environ[key] = _config_values[key]


def get_config_path() -> str | None:
    return _config_path


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %s.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_env_float(name: str, default: float, min_value: float | None = None) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %s.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_env_list(name: str) -> list[str]:
    raw = os.getenv(name)
    if not raw:
        return []
    items: list[str] = []
    for part in raw.split(","):
        item = part.strip()
        if item and item not in items:
            items.append(item)
    return items


def mask_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    sensitive = any(marker in name.upper() for marker in _SENSITIVE_MARKERS)
    if not sensitive and not sanitized.startswith(("sk-", "Bearer ", "eyJ")):
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Configuration loaded (config file: %s).", _config_path or "<none>")
    for key in _CONFIG_KEYS:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else mask_value(key, raw_value)
        logger.info("[ENV] %s=%s", key, value)


load_environment()

OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL") or DEFAULT_OPENROUTER_BASE_URL
OPENROUTER_TIMEOUT = get_env_float("OPENROUTER_TIMEOUT", DEFAULT_OPENROUTER_TIMEOUT, min_value=0.1)
CATEGORIES_CACHE_TTL = get_env_float("CATEGORIES_CACHE_TTL", DEFAULT_CATEGORIES_CACHE_TTL, min_value=0.0)
CATEGORIES_LOCALE = os.getenv("CATEGORIES_LOCALE") or DEFAULT_CATEGORIES_LOCALE
CATEGORIZATION_MAX_CONCURRENCY = get_env_int(
    "CATEGORIZATION_MAX_CONCURRENCY",
    DEFAULT_MAX_CONCURRENCY,
    min_value=0,
)
