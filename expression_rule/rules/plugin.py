# -*- coding: utf-8 -*-
"""
Notification rule plugin surface for SimpleExpression.

The host notification service drives a rule through these calls:
    plugin_init -> plugin_triggers -> (plugin_eval -> plugin_reason)* -> plugin_shutdown
with plugin_reconfigure possibly arriving at any point from another thread.
"""
import json
from typing import Any, Dict, Mapping, Optional, Union
from loguru import logger

from expression_rule.expression.bindings import MAX_VARIABLES
from expression_rule.notif.formatter import build_reason
from expression_rule.rules.simple_expression import RULE_NAME, SimpleExpressionRule


PLUGIN_VERSION = "1.0.0"
INTERFACE_VERSION = "1.0.0"
PLUGIN_TYPE = "notificationRule"

DEFAULT_EXPRESSION = "if(humidity > 50, 1, 0)"

DEFAULT_CONFIG: Dict[str, Dict[str, str]] = {
    "plugin": {
        "description": f"{RULE_NAME} notification rule",
        "type": "string",
        "default": RULE_NAME,
        "readonly": "true",
    },
    "description": {
        "description": "Generate a notification if all configured assets trigger",
        "type": "string",
        "default": "Generate a notification if all configured assets trigger",
        "displayName": "Rule",
        "order": "1",
    },
    "asset": {
        "description": "The asset name for which notifications will be generated",
        "type": "string",
        "default": "modbus",
        "displayName": "Asset",
        "order": "2",
    },
    "expression": {
        "description": "The expression to evaluate",
        "type": "string",
        "default": DEFAULT_EXPRESSION,
        "displayName": "Expression",
        "order": "3",
    },
}

Payload = Union[str, bytes, Mapping[str, Any]]


def _load_payload(payload: Payload, what: str) -> Optional[Mapping[str, Any]]:
    """Accept a mapping or a JSON document; None if it cannot be used."""
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid {what} JSON: {e}")
            return None
    if not isinstance(payload, Mapping):
        logger.warning(f"Invalid {what}: expected an object, got {type(payload).__name__}")
        return None
    return payload


def _config_values(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Flatten host category items ({"value": ...} / {"default": ...}) to plain values."""
    values = {}
    for key, item in config.items():
        if isinstance(item, Mapping) and ("value" in item or "default" in item):
            values[key] = item.get("value", item.get("default"))
        else:
            values[key] = item

    # rule_config travels as an embedded JSON document
    rule_config = values.get("rule_config")
    if isinstance(rule_config, str):
        try:
            values["rule_config"] = json.loads(rule_config)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring invalid rule_config JSON: {e}")
            values["rule_config"] = {}
    return values


def plugin_info() -> Dict[str, Any]:
    """Plugin description handed to the host on load."""
    return {
        "name": RULE_NAME,
        "version": PLUGIN_VERSION,
        "flags": 0,
        "type": PLUGIN_TYPE,
        "interface": INTERFACE_VERSION,
        "config": DEFAULT_CONFIG,
    }


def plugin_init(config: Payload) -> Optional[SimpleExpressionRule]:
    """
    Create and configure a rule.

    Returns:
        The rule handle, or None if the configuration is unusable
    """
    values = _load_payload(config, "configuration")
    if values is None:
        logger.info("plugin_init failed")
        return None
    values = _config_values(values)

    try:
        max_variables = int(values.get("max_variables") or MAX_VARIABLES)
    except (TypeError, ValueError):
        max_variables = MAX_VARIABLES

    rule = SimpleExpressionRule(max_variables=max_variables)
    try:
        ok = rule.configure_from(values)
    except TypeError as e:
        logger.info(f"plugin_init failed: {e}")
        return None

    if not ok:
        logger.info("plugin_init failed")
        return None
    return rule


def plugin_triggers(rule: SimpleExpressionRule) -> Dict[str, Any]:
    """Assets the rule wants to receive, as {"triggers": [{"asset": name}, ...]}."""
    triggers = {"triggers": [{"asset": name} for name in rule.triggers()]}
    logger.debug(f"plugin_triggers(): {triggers}")
    return triggers


def plugin_eval(rule: SimpleExpressionRule, asset_values: Payload) -> bool:
    """
    Evaluate one cycle of notification data.

    All subscribed assets must trigger for the cycle to trigger; a
    subscribed asset missing from the data counts as not triggered.
    If any asset's expression fails to compile, the cycle returns False
    and the previous trigger state is kept.

    Args:
        rule: Rule handle from plugin_init
        asset_values: {asset_name: {datapoint: value, ...}, ...} or its JSON

    Returns:
        Aggregated result for the cycle
    """
    data = _load_payload(asset_values, "notification data")
    if data is None:
        return False

    return rule.evaluate_cycle(data)


def plugin_reason(rule: SimpleExpressionRule, tz_name: str = "UTC") -> Dict[str, Any]:
    """Reason document: {"reason": "triggered"|"cleared", "asset": ..., "timestamp": ...}."""
    reason = build_reason(rule.state.snapshot(), tz_name)
    logger.debug(f"plugin_reason(): {reason}")
    return reason


def plugin_reconfigure(rule: SimpleExpressionRule, new_config: Payload) -> bool:
    """Apply a new configuration to a live rule."""
    values = _load_payload(new_config, "configuration")
    if values is None:
        logger.info("plugin_reconfigure failed")
        return False

    try:
        ok = rule.configure_from(_config_values(values))
    except TypeError as e:
        logger.info(f"plugin_reconfigure failed: {e}")
        return False

    if not ok:
        logger.info("plugin_reconfigure failed")
    return ok


def plugin_shutdown(rule: SimpleExpressionRule):
    rule.shutdown()
