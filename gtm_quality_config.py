#!/usr/bin/env python3
"""
GTM Quality Configuration
Weights, thresholds and severity tables used by the quality analyzers.
"""

import json
import logging
from dataclasses import dataclass, field, fields, asdict
from typing import Dict

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when a quality configuration file cannot be used"""


def _score_weights() -> Dict[str, float]:
    return {
        'tags': 0.18,
        'triggers': 0.18,
        'variables': 0.14,
        'consent': 0.14,
        'trigger_quality': 0.14,
        'variable_quality': 0.14,
        'html_security': 0.08,
    }


def _trigger_weights() -> Dict[str, float]:
    return {
        'specificity': 0.40,
        'blocking': 0.20,
        'timing': 0.20,
        'spa': 0.10,
        'hygiene': 0.10,
    }


def _variable_weights() -> Dict[str, float]:
    return {
        'dlv': 0.30,
        'selectors': 0.20,
        'js': 0.20,
        'lookup': 0.15,
        'regex': 0.10,
        'hygiene': 0.05,
    }


def _html_severity_weights() -> Dict[str, float]:
    return {'critical': 0.5, 'major': 0.25, 'minor': 0.1}


def _variable_severities() -> Dict[str, str]:
    return {
        'lookup_without_default': 'critical',
        'js_unsafe_code': 'critical',
        'dlv_missing_fallback': 'major',
        'regex_malformed': 'major',
        'css_fragile_selectors': 'minor',
        'variable_unused': 'minor',
        'variable_duplicate': 'minor',
    }


def _status_thresholds() -> Dict[str, float]:
    return {'critical': 0.5, 'major': 0.7, 'minor': 0.85}


@dataclass(frozen=True)
class QualityConfig:
    score_weights: Dict[str, float] = field(default_factory=_score_weights)
    trigger_weights: Dict[str, float] = field(default_factory=_trigger_weights)
    variable_weights: Dict[str, float] = field(default_factory=_variable_weights)
    html_severity_weights: Dict[str, float] = field(default_factory=_html_severity_weights)
    variable_severities: Dict[str, str] = field(default_factory=_variable_severities)
    status_thresholds: Dict[str, float] = field(default_factory=_status_thresholds)
    spa_penalty_score: float = 0.5
    min_timer_interval_ms: int = 250
    max_statements_without_try: int = 10
    max_parameter_depth: int = 50
    name_min_length: int = 3
    name_max_length: int = 50

    def to_dict(self) -> Dict:
        return asdict(self)


_WEIGHT_TABLES = ('score_weights', 'trigger_weights', 'variable_weights', 'html_severity_weights')
_SEVERITY_VALUES = ('minor', 'major', 'critical')


def validate_config(config: QualityConfig) -> QualityConfig:
    """Check weight tables and scalar limits, raising ConfigurationError on bad values"""
    defaults = QualityConfig()

    for table_name in _WEIGHT_TABLES:
        table = getattr(config, table_name)
        if not isinstance(table, dict):
            raise ConfigurationError(f"'{table_name}' must be an object")
        unknown = set(table) - set(getattr(defaults, table_name))
        if unknown:
            raise ConfigurationError(f"Unknown keys in '{table_name}': {', '.join(sorted(unknown))}")
        for key, weight in table.items():
            if isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight < 0:
                raise ConfigurationError(f"Weight '{table_name}.{key}' must be a non-negative number")
        if table_name != 'html_severity_weights' and sum(table.values()) <= 0:
            raise ConfigurationError(f"Weights in '{table_name}' must not all be zero")

    for key, severity in config.variable_severities.items():
        if severity not in _SEVERITY_VALUES:
            raise ConfigurationError(f"Severity for '{key}' must be one of {', '.join(_SEVERITY_VALUES)}")

    thresholds = config.status_thresholds
    if set(thresholds) != set(_status_thresholds()):
        raise ConfigurationError("'status_thresholds' needs exactly critical, major and minor")
    if not thresholds['critical'] <= thresholds['major'] <= thresholds['minor']:
        raise ConfigurationError("'status_thresholds' must satisfy critical <= major <= minor")

    if not 0 <= config.spa_penalty_score <= 1:
        raise ConfigurationError("'spa_penalty_score' must be between 0 and 1")
    for name in ('min_timer_interval_ms', 'max_statements_without_try', 'max_parameter_depth',
                 'name_min_length', 'name_max_length'):
        value = getattr(config, name)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigurationError(f"'{name}' must be a non-negative integer")
    if config.name_min_length > config.name_max_length:
        raise ConfigurationError("'name_min_length' must not exceed 'name_max_length'")

    return config


def config_from_dict(overrides: Dict) -> QualityConfig:
    """Merge a mapping of overrides over the defaults"""
    if not isinstance(overrides, dict):
        raise ConfigurationError('Configuration must be a JSON object')

    known = {f.name for f in fields(QualityConfig)}
    unknown = set(overrides) - known
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    defaults = QualityConfig()
    values = {}
    for name, value in overrides.items():
        default = getattr(defaults, name)
        if isinstance(default, dict):
            # Tables are merged key by key so partial overrides keep the other defaults
            if not isinstance(value, dict):
                raise ConfigurationError(f"'{name}' must be an object")
            merged = dict(default)
            merged.update(value)
            values[name] = merged
        else:
            values[name] = value

    return validate_config(QualityConfig(**values))


def load_config(path: str) -> QualityConfig:
    """Load a JSON configuration file and merge it over the defaults"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            overrides = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file '{path}' not found")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in configuration file '{path}': {e}")

    config = config_from_dict(overrides)
    logger.debug('Loaded quality configuration from %s', path)
    return config
