import os
import re
import threading
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dotenv import load_dotenv

from expression_rule.expression.bindings import MAX_VARIABLES

# Load environment variables from .env
load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env"))

# Environment variables
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "")
CONFIG_FILE = os.getenv("CONFIG_FILE", "./configs/rule.yaml")
RULE_TIMEZONE = os.getenv("RULE_TIMEZONE", "UTC")

# ${NAME} or ${NAME:-fallback}
_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def _expand_env(value: Any) -> Any:
    """
    Resolve ${VAR} / ${VAR:-fallback} placeholders throughout a loaded document.

    A value that is a single placeholder with no variable and no fallback
    becomes None, so lookups fall through to their defaults. Placeholders
    embedded in longer strings resolve to "" when unset.
    """
    if isinstance(value, dict):
        return {key: _expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    if not isinstance(value, str):
        return value

    whole = _ENV_PATTERN.fullmatch(value)
    if whole:
        return os.getenv(whole.group(1), whole.group(2))
    return _ENV_PATTERN.sub(lambda m: os.getenv(m.group(1), m.group(2) or ""), value)


class ConfigLoader:
    """Rule configuration document loaded from YAML with environment placeholders resolved."""

    REQUIRED_SECTIONS = ('rule',)

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.config_path.is_file():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            document = yaml.safe_load(self.config_path.read_text(encoding='utf-8'))
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {self.config_path}: {e}") from e

        if document is None:
            document = {}
        if not isinstance(document, dict):
            raise ValueError(f"Config file must contain a mapping: {self.config_path}")

        for section in self.REQUIRED_SECTIONS:
            if section not in document:
                raise ValueError(f"Missing required config section: {section}")
            if not isinstance(document[section], dict):
                raise ValueError(f"Config section '{section}' must be a mapping")

        return _expand_env(document)

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Value at a dot-separated path, or default when any step is missing.
        Example: config.get('rule.asset') -> 'modbus'
        """
        node: Any = self._config
        for key in key_path.split('.'):
            if not isinstance(node, dict) or node.get(key) is None:
                return default
            node = node[key]
        return node

    @property
    def raw(self) -> Dict[str, Any]:
        """Resolved config dict."""
        return self._config


_config_instance: Optional[ConfigLoader] = None
_config_instance_lock = threading.Lock()


def get_config() -> ConfigLoader:
    """Shared config, loaded from CONFIG_FILE on first use."""
    global _config_instance
    with _config_instance_lock:
        if _config_instance is None:
            _config_instance = ConfigLoader(CONFIG_FILE)
        return _config_instance


def reload_config(config_path: Optional[str] = None) -> ConfigLoader:
    """
    Replace the shared config. The old instance stays in place if the new
    file cannot be loaded.
    """
    global _config_instance
    loader = ConfigLoader(config_path or CONFIG_FILE)
    with _config_instance_lock:
        _config_instance = loader
    return loader


def get_rule_config() -> Dict[str, Any]:
    """
    Get rule config in the shape SimpleExpressionRule.configure_from() expects.
    Missing asset or expression is returned as an empty string (inert rule).
    """
    config = get_config()
    datapoints = config.get('rule.datapoints', [])
    if not isinstance(datapoints, list):
        datapoints = []

    extra_assets = config.get('rule.extra_assets', [])
    if not isinstance(extra_assets, list):
        extra_assets = []

    return {
        'asset': str(config.get('rule.asset', '') or ''),
        'expression': str(config.get('rule.expression', '') or ''),
        'datapoints': [str(d) for d in datapoints],
        'extra_assets': [str(a) for a in extra_assets],
    }


def get_max_variables() -> int:
    """Variable cap from config, clamped to 1..MAX_VARIABLES."""
    try:
        value = int(get_config().get('rule.max_variables', MAX_VARIABLES))
    except (ValueError, TypeError):
        return MAX_VARIABLES
    return max(1, min(value, MAX_VARIABLES))


def get_reason_timezone() -> str:
    return get_config().get('reason.timezone', RULE_TIMEZONE)


def get_logging_config() -> Dict[str, Any]:
    """Logging level and optional log file; ${VAR} values come from the environment."""
    config = get_config()
    return {
        'level': str(config.get('logging.level', LOG_LEVEL) or LOG_LEVEL).upper(),
        'file': config.get('logging.file', LOG_FILE) or None,
    }
