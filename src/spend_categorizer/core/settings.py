import os

from dotenv import find_dotenv, load_dotenv

from spend_categorizer.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

_CONFIG_FILE_PATH: str | None = None
_CONFIG_FILE_VALUES: dict[str, str] = {}
_EXTERNAL_ENV_KEYS: set[str] = set()

# Keys that may be supplied by config.yaml when they are not in the environment.
_CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "DATA_DIR",
    "RULES_PATH",
    "MERCHANTS_PATH",
    "TRAINING_PATH",
    "RULE_CONFIDENCE_THRESHOLD",
    "PATTERN_CONFIDENCE_THRESHOLD",
    "FUZZY_MATCH_THRESHOLD",
    "WEIGHT_PRIOR",
    "SOFTMAX_TEMPERATURE",
    "LEARNING_RATE",
    "PROMOTION_THRESHOLD",
    "ANOMALY_MIN_SAMPLES",
    "FREQUENCY_LIMIT",
    "DUPLICATE_WINDOW_DAYS",
    "SEVERITY_BANDS",
    "LOCATION_MIN_HISTORY",
    "MIN_USAGE",
    "BATCH_WORKERS",
)


def _resolve_dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    return find_dotenv(usecwd=True) or None


def _resolve_config_path() -> str:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return os.path.join(config_dir, CONFIG_FILENAME)
    nested = os.path.join(os.getcwd(), "config", CONFIG_FILENAME)
    if os.path.exists(nested):
        return nested
    return os.path.join(os.getcwd(), CONFIG_FILENAME)


def _clean_value(raw_value: str) -> str:
    """Drop a trailing `# comment` outside quotes, then strip matching quotes."""
    quote: str | None = None
    value = raw_value
    for index, char in enumerate(raw_value):
        if char in "\"'":
            if quote is None:
                quote = char
            elif quote == char:
                quote = None
        elif char == "#" and quote is None:
            value = raw_value[:index]
            break
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    return value


def read_config_file(path: str | None) -> dict[str, str]:
    """Read a flat `KEY: value` file. Nested YAML is not supported."""
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
    global _CONFIG_FILE_PATH
    global _CONFIG_FILE_VALUES
    global _EXTERNAL_ENV_KEYS

    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    _EXTERNAL_ENV_KEYS = set(os.environ.keys())

    _CONFIG_FILE_PATH = _resolve_config_path()
    _CONFIG_FILE_VALUES = read_config_file(_CONFIG_FILE_PATH)

    for key in _CONFIG_KEYS:
        if key not in os.environ and key in _CONFIG_FILE_VALUES:
            os.environ[key] = _CONFIG_FILE_VALUES[key]


def is_env_override(name: str) -> bool:
    return name in _EXTERNAL_ENV_KEYS


def ensure_dirs(*paths: str | None) -> None:
    for path in paths:
        if path and path not in {".", "./"}:
            os.makedirs(path, exist_ok=True)


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


def get_env_float(
    name: str,
    default: float = 0.0,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if (min_value is not None and value < min_value) or (
        max_value is not None and value > max_value
    ):
        logger.warning(
            "[ENV] %s='%s' outside [%s, %s], using default %s.",
            name,
            raw,
            min_value,
            max_value,
            default,
        )
        return default
    return value


def get_env_float_list(name: str, default: tuple[float, ...]) -> tuple[float, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        values = tuple(float(part) for part in raw.split(",") if part.strip())
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if not values or list(values) != sorted(values):
        logger.warning("[ENV] %s must be ascending, using default %s.", name, default)
        return default
    return values


_ENV_KEYS_TO_LOG = _CONFIG_KEYS


def log_environment() -> None:
    logger.info("[ENV] Effective configuration (config file: %s).", _CONFIG_FILE_PATH)
    for key in _ENV_KEYS_TO_LOG:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else raw_value.replace("\n", "\\n")
        source = "env" if is_env_override(key) else "file/default"
        logger.info("[ENV] %s=%s (%s)", key, value, source)


PACKAGE_DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")

DEFAULT_RULES_PATH = os.path.join(PACKAGE_DATA_DIR, "rules.json")
DEFAULT_MERCHANTS_PATH = os.path.join(PACKAGE_DATA_DIR, "merchants.json")
DEFAULT_TRAINING_PATH = os.path.join(PACKAGE_DATA_DIR, "training.json")
DEFAULT_BATCH_WORKERS = 4


load_environment()

DATA_DIR = os.getenv("DATA_DIR", ".")
LOG_DIR = os.getenv("LOG_DIR")
CONFIG_DIR = os.getenv("CONFIG_DIR")

ensure_dirs(DATA_DIR, LOG_DIR, CONFIG_DIR)

RULES_PATH = os.getenv("RULES_PATH", DEFAULT_RULES_PATH)
MERCHANTS_PATH = os.getenv("MERCHANTS_PATH", DEFAULT_MERCHANTS_PATH)
TRAINING_PATH = os.getenv("TRAINING_PATH", DEFAULT_TRAINING_PATH)

BATCH_WORKERS = get_env_int("BATCH_WORKERS", DEFAULT_BATCH_WORKERS, min_value=1)
