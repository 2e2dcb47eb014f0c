# -*- coding: utf-8 -*-
"""
Error types for the expression rule.

None of these is fatal to the host: every failure degrades to
"rule did not trigger this cycle".
"""


class RuleError(Exception):
    """Base class for expression rule errors."""


class ConfigurationIncomplete(RuleError):
    """Asset name or expression text missing; the rule stays inert."""

    def __init__(self, missing: str):
        self.missing = missing
        super().__init__(f"Rule configuration incomplete: missing {missing}")


class CompileError(RuleError):
    """Expression text failed to parse or references unknown symbols."""

    def __init__(self, message: str, expression: str = ""):
        self.message = message
        self.expression = expression
        super().__init__(message)

    def __str__(self) -> str:
        if self.expression:
            return f"{self.message} (expression: {self.expression!r})"
        return self.message


class CapacityExceeded(RuleError):
    """More distinct datapoint names than the bindings table can hold."""

    def __init__(self, name: str, limit: int):
        self.name = name
        self.limit = limit
        super().__init__(f"Too many datapoints (>{limit}), cannot bind '{name}'")


class NonFiniteResult(RuleError):
    """Expression evaluated to NaN or infinity."""

    def __init__(self, value: float, expression: str = ""):
        self.value = value
        self.expression = expression
        super().__init__(f"Expression {expression!r} evaluated to {value}")
