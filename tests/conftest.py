"""Shared test fixtures and configuration."""
from pathlib import Path
from typing import Dict
import pytest
import yaml

from expression_rule.rules.simple_expression import SimpleExpressionRule


@pytest.fixture
def rule() -> SimpleExpressionRule:
    """Unconfigured rule."""
    return SimpleExpressionRule()


@pytest.fixture
def humidity_rule() -> SimpleExpressionRule:
    """Rule on asset 'tempSensor' triggering when humidity > 50."""
    r = SimpleExpressionRule()
    r.configure("tempSensor", "humidity > 50")
    return r


@pytest.fixture
def sample_readings() -> Dict[str, Dict]:
    """One cycle of notification data with numeric and non-numeric datapoints."""
    return {
        "tempSensor": {
            "humidity": 70,
            "temperature": 21.5,
            "status": "ok",
            "flags": [1, 2],
        }
    }


@pytest.fixture
def rule_config() -> Dict:
    """Rule configuration as stored in YAML."""
    return {
        'rule': {
            'asset': 'tempSensor',
            'extra_assets': [],
            'expression': 'if(humidity > 50, 1, 0)',
            'datapoints': ['humidity', 'temperature'],
            'max_variables': 20,
        },
        'reason': {
            'timezone': 'America/Sao_Paulo',
        },
        'logging': {
            'level': 'debug',
        },
    }


@pytest.fixture
def test_config_yaml(tmp_path: Path, rule_config: Dict) -> Path:
    """Create a temporary rule config YAML file."""
    config_file = tmp_path / 'rule.yaml'
    with open(config_file, 'w', encoding='utf-8') as f:
        yaml.dump(rule_config, f)
    return config_file


@pytest.fixture
def loaded_config(monkeypatch, test_config_yaml: Path):
    """Point the global config singleton at the temporary YAML file."""
    import expression_rule.config as config_module

    monkeypatch.setattr(config_module, 'CONFIG_FILE', str(test_config_yaml))
    monkeypatch.setattr(config_module, '_config_instance', None)
    return config_module.get_config()


@pytest.fixture
def replay_file(tmp_path: Path) -> Path:
    """JSON-lines file with three cycles: trigger, clear, missing asset."""
    path = tmp_path / 'cycles.jsonl'
    path.write_text(
        '{"tempSensor": {"humidity": 70}}\n'
        '# comment lines are skipped\n'
        '{"tempSensor": {"humidity": 30}}\n'
        '\n'
        '{"otherAsset": {"humidity": 90}}\n',
        encoding='utf-8'
    )
    return path
