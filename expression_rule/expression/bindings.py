# -*- coding: utf-8 -*-
"""
Variable bindings for compiled expressions.

Each datapoint name maps to a VariableSlot that lives for as long as the
table does. Compiled expressions never hold raw values, they read through
the slot objects, so updating a value in place is immediately visible to
every expression compiled against the table.
"""
import math
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Tuple
from loguru import logger

from expression_rule.expression.errors import CapacityExceeded


# Hard cap on distinct datapoints bound into one expression
MAX_VARIABLES = 20


@dataclass
class VariableSlot:
    """Named numeric storage slot. Identity is the name."""
    name: str
    value: float = float("nan")


class BindingsSnapshot(Mapping):
    """
    Read-only view over the slots that existed when it was taken.

    Lookups go through the slot objects, so values observed after the
    snapshot was taken are seen, but names added later are not.
    """

    def __init__(self, slots: Tuple[VariableSlot, ...]):
        self._slots = slots
        self._index: Dict[str, int] = {slot.name: i for i, slot in enumerate(slots)}

    def __getitem__(self, name: str) -> float:
        return self._slots[self._index[name]].value

    def __iter__(self) -> Iterator[str]:
        return iter(self._index)

    def __len__(self) -> int:
        return len(self._slots)

    def slot(self, name: str) -> VariableSlot:
        return self._slots[self._index[name]]


def _to_float(name: str, value) -> float:
    """Integers beyond float range saturate to +/-inf."""
    try:
        return float(value)
    except OverflowError:
        logger.warning(f"Datapoint '{name}' is out of float range, bound as infinity")
        return math.inf if value > 0 else -math.inf


class VariableBindings:
    """
    Ordered, capacity-bounded table of VariableSlots.

    Slots are appended, never moved or replaced. The whole table is thrown
    away when the rule is reconfigured.
    """

    def __init__(self, max_variables: int = MAX_VARIABLES):
        self.max_variables = max(1, min(int(max_variables), MAX_VARIABLES))
        self._slots: List[VariableSlot] = []
        self._index: Dict[str, int] = {}

    def upsert(self, name: str, value: float) -> bool:
        """
        Bind or update a variable.

        Args:
            name: Datapoint name (exact match, case-sensitive)
            value: Numeric value

        Returns:
            True if a new slot was created (callers must recompile),
            False if an existing slot was updated or the table is full.
        """
        value = _to_float(name, value)

        idx = self._index.get(name)
        if idx is not None:
            self._slots[idx].value = value
            return False

        if len(self._slots) >= self.max_variables:
            err = CapacityExceeded(name, self.max_variables)
            logger.warning(f"{err}; datapoint ignored")
            return False

        self._slots.append(VariableSlot(name, value))
        self._index[name] = len(self._slots) - 1
        logger.debug(f"Bound variable '{name}' (slot {self._index[name]})")
        return True

    def count(self) -> int:
        return len(self._slots)

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def get(self, name: str) -> Optional[float]:
        idx = self._index.get(name)
        if idx is None:
            return None
        return self._slots[idx].value

    def names(self) -> List[str]:
        """Variable names in binding order."""
        return [slot.name for slot in self._slots]

    def snapshot_for_compilation(self) -> BindingsSnapshot:
        return BindingsSnapshot(tuple(self._slots))

    def clear(self):
        self._slots = []
        self._index = {}
