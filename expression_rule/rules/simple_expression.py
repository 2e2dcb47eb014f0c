# -*- coding: utf-8 -*-
"""
SimpleExpression rule - evaluates a user expression against asset datapoints.

Configuration, variable bindings and the compiled expression are one unit
of shared state guarded by a single configuration lock. Reconfiguration
and evaluation cycles are therefore totally ordered for a rule instance.
"""
import math
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional
from loguru import logger

from expression_rule.expression.bindings import VariableBindings, MAX_VARIABLES
from expression_rule.expression.errors import CompileError, ConfigurationIncomplete
from expression_rule.expression.evaluator import (
    CompiledExpression,
    compile_expression,
    is_triggered,
)
from expression_rule.rules.state import TriggerState, TriggerStatus


RULE_NAME = "SimpleExpression"


@dataclass
class AssetEvaluation:
    """Outcome of evaluating one asset's datapoints."""
    asset_name: Optional[str]
    triggered: bool = False
    value: float = math.nan
    error: Optional[str] = None


def _is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class SimpleExpressionRule:
    """
    Notification rule driven by a single expression.

    Usage:
        rule = SimpleExpressionRule()
        rule.configure("tempSensor", "humidity > 50")
        rule.eval_asset({"humidity": 70})   # True
    """

    def __init__(self, max_variables: int = MAX_VARIABLES):
        self.max_variables = max_variables
        self.state = TriggerState()

        self._config_lock = threading.Lock()
        self._asset_name: str = ""
        self._expression: str = ""
        self._triggers: List[str] = []
        self._bindings = VariableBindings(max_variables)
        self._compiled: Optional[CompiledExpression] = None

        self.last_compile_error: Optional[str] = None
        self.last_value: float = math.nan

    # --- configuration ---

    def configure(
        self,
        asset_name: Optional[str],
        expression: Optional[str],
        extra_assets: Optional[Iterable[str]] = None
    ) -> bool:
        """
        Apply a new asset / expression pair.

        An empty asset or expression leaves the rule inert but still counts
        as success: configuration may arrive in stages. Compilation waits
        for the first evaluation, when the datapoint names are known.

        Args:
            asset_name: Asset whose datapoints feed the expression
            expression: Expression text
            extra_assets: Further assets that must all trigger too

        Returns:
            True (configuration never fails here; bad expressions surface
            as compile errors during evaluation)

        Raises:
            TypeError: asset or expression is not a string
        """
        if not isinstance(asset_name or "", str) or not isinstance(expression or "", str):
            raise TypeError("asset and expression must be strings")
        asset_name = (asset_name or "").strip()
        expression = (expression or "").strip()

        with self._config_lock:
            self._bindings = VariableBindings(self.max_variables)
            self._compiled = None
            self.last_compile_error = None
            self.last_value = math.nan

            if not asset_name or not expression:
                missing = "asset" if not asset_name else "expression"
                logger.info(f"{ConfigurationIncomplete(missing)}; rule inactive until reconfigured")
                self._asset_name = ""
                self._expression = ""
                self._triggers = []
                return True

            self._asset_name = asset_name
            self._expression = expression
            self._triggers = [asset_name]
            for extra in extra_assets or []:
                if extra and extra not in self._triggers:
                    self._triggers.append(extra)

        logger.info(f"{RULE_NAME} configured: asset='{asset_name}', expression='{expression}'")
        return True

    def configure_from(self, config: Mapping[str, Any]) -> bool:
        """
        Configure from a host configuration mapping.

        Reads top-level "asset" and "expression" keys, falling back to the
        JSON rule document under "rule_config":
            {"asset": {"name": ...}, "expression": {"value": ...}}
        """
        rule_config = config.get("rule_config") or {}
        if not isinstance(rule_config, Mapping):
            rule_config = {}

        asset = config.get("asset")
        if not asset:
            asset = (rule_config.get("asset") or {}).get("name")

        expression = config.get("expression")
        if not expression:
            expression = (rule_config.get("expression") or {}).get("value")

        return self.configure(asset, expression, config.get("extra_assets"))

    @property
    def asset_name(self) -> str:
        with self._config_lock:
            return self._asset_name

    @property
    def expression(self) -> str:
        with self._config_lock:
            return self._expression

    def is_configured(self) -> bool:
        with self._config_lock:
            return bool(self._asset_name and self._expression)

    # --- trigger subscriptions ---

    def triggers(self) -> List[str]:
        """Asset names this rule subscribes to."""
        with self._config_lock:
            return list(self._triggers)

    def has_triggers(self) -> bool:
        with self._config_lock:
            return bool(self._triggers)

    def add_trigger(self, asset_name: str):
        """Subscribe an additional asset; all subscribed assets must trigger."""
        with self._config_lock:
            if asset_name and asset_name not in self._triggers:
                self._triggers.append(asset_name)

    def remove_triggers(self):
        with self._config_lock:
            self._triggers = []

    # --- evaluation ---

    def evaluate_asset(self, datapoints: Mapping[str, Any], asset_name: Optional[str] = None) -> AssetEvaluation:
        """
        Bind the datapoints, recompile if needed and evaluate.

        Non-numeric datapoints are skipped. A compile error yields
        triggered=False with the error message; trigger state is not touched.
        """
        with self._config_lock:
            return self._evaluate_locked(datapoints, asset_name)

    def evaluate_cycle(self, data: Mapping[str, Any]) -> bool:
        """
        Evaluate every subscribed asset and record the aggregated state.

        The whole cycle runs under the configuration lock, so a concurrent
        reconfiguration lands either before or after it, never in between
        two assets.

        Args:
            data: {asset_name: {datapoint: value, ...}, ...}

        Returns:
            True only if every subscribed asset is present and triggers.
            A compile error returns False and leaves the trigger state as is.
        """
        with self._config_lock:
            aggregated = bool(self._triggers)
            compile_failed = False
            last_asset = None

            for asset_name in self._triggers:
                datapoints = data.get(asset_name)
                if not isinstance(datapoints, Mapping):
                    logger.debug(f"evaluate_cycle(): asset '{asset_name}' missing from data")
                    aggregated = False
                    continue

                evaluation = self._evaluate_locked(datapoints, asset_name)
                last_asset = asset_name
                if evaluation.error:
                    compile_failed = True
                aggregated = aggregated and evaluation.triggered

            if compile_failed:
                logger.warning("evaluate_cycle(): expression did not compile, trigger state unchanged")
                return False

            self.state.set_state(aggregated, last_asset)
        return aggregated

    def _evaluate_locked(self, datapoints: Mapping[str, Any], asset_name: Optional[str]) -> AssetEvaluation:
        result = AssetEvaluation(asset_name=asset_name)
        if not self._expression:
            logger.debug(f"{RULE_NAME} not configured, skipping evaluation")
            return result

        grew = False
        for name, value in datapoints.items():
            if not _is_numeric(value):
                continue
            if self._bindings.upsert(name, value):
                grew = True

        if grew or self._compiled is None:
            try:
                self._compiled = compile_expression(
                    self._expression,
                    self._bindings.snapshot_for_compilation()
                )
                self.last_compile_error = None
            except CompileError as e:
                self._compiled = None
                self.last_compile_error = str(e)
                logger.error(f"Failed to compile expression: {e}")
                result.error = str(e)
                return result

        value = self._compiled.evaluate()
        self.last_value = value
        result.value = value
        result.triggered = is_triggered(value)
        logger.debug(f"evaluate_asset({asset_name}): value={value}, triggered={result.triggered}")
        return result

    def eval_asset(self, datapoints: Mapping[str, Any]) -> bool:
        """Evaluate one asset's datapoints; True only if the expression is exactly 1."""
        return self.evaluate_asset(datapoints).triggered

    def variable_count(self) -> int:
        with self._config_lock:
            return self._bindings.count()

    def variables(self) -> Dict[str, float]:
        with self._config_lock:
            return {name: self._bindings.get(name) for name in self._bindings.names()}

    # --- state ---

    def set_state(self, triggered: bool, asset_name: Optional[str] = None,
                  timestamp: Optional[datetime] = None) -> TriggerStatus:
        return self.state.set_state(triggered, asset_name, timestamp)

    def get_state(self) -> TriggerStatus:
        return self.state.status

    def shutdown(self):
        """Drop bindings and compiled expression."""
        with self._config_lock:
            self._bindings.clear()
            self._compiled = None
            self._triggers = []
        logger.debug(f"{RULE_NAME} rule shut down")
