"""
Per-request credit cost lookup.
"""

import re
from typing import Iterable, List, Optional, Pattern, Tuple

import yaml

from shared.logging import get_logger

from ..models import CostRule, CostTableFile, TargetDescriptor


logger = get_logger("gateway.cost_table")

DEFAULT_COST = 1

DEFAULT_RULES: List[Tuple[str, int]] = [
    # Exact endpoints
    (r"^/api/v1/simple$", 1),
    (r"^/api/v1/search$", 2),
    (r"^/api/v1/complex$", 5),
    # Endpoint families
    (r"^/api/v1/images/.*$", 3),
    (r"^/api/v1/data/large/.*$", 4),
    (r"^/api/v2/.*$", 2),
]


class CostTable:
    """Ordered ``(regex, cost)`` rules; the first matching rule wins."""

    def __init__(self, rules: Iterable[Tuple[str, int]], default_cost: int = DEFAULT_COST):
        self.default_cost = default_cost
        self._rules: List[Tuple[Pattern[str], int]] = []
        for pattern, cost in rules:
            if cost < 0:
                raise ValueError(f"Negative cost for pattern {pattern}")
            self._rules.append((re.compile(pattern), cost))

    @classmethod
    def default(cls) -> "CostTable":
        return cls(DEFAULT_RULES)

    @classmethod
    def from_yaml(cls, path: str) -> "CostTable":
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        table = CostTableFile.model_validate(data)
        logger.info("Loaded cost table", path=path, rules=len(table.rules))
        return cls(((rule.pattern, rule.cost) for rule in table.rules), table.default_cost)

    @classmethod
    def load(cls, cost_table_file: Optional[str] = None) -> "CostTable":
        if cost_table_file:
            return cls.from_yaml(cost_table_file)
        return cls.default()

    @property
    def rules(self) -> List[CostRule]:
        return [CostRule(pattern=regex.pattern, cost=cost) for regex, cost in self._rules]

    def cost_for(self, path: str) -> int:
        for regex, cost in self._rules:
            if regex.search(path):
                return cost
        return self.default_cost

    def cost_for_target(self, path: str, target: Optional[TargetDescriptor] = None) -> int:
        """A target's own cost takes precedence over the table."""
        if target is not None and target.cost is not None:
            return target.cost
        return self.cost_for(path)
