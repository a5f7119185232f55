"""
Static target table and path matching.

Targets are loaded once at startup, either from a YAML file or from the
built-in defaults, and kept in registration order. Lookups by id are O(1);
path lookups scan the table and the first registered match wins.
"""

import re
from typing import Dict, Iterable, List, Optional

import yaml

from shared.errors import TargetNotFoundError
from shared.logging import get_logger

from ..models import TargetDescriptor, TargetTable


logger = get_logger("gateway.target_resolver")

_REGEX_METACHARACTERS = re.compile(r"[\\^$.|?*+()\[\]{}]")

DEFAULT_TARGETS: List[Dict] = [
    {
        "id": "api-target1",
        "name": "API v1 Target",
        "pattern": "/api/v1/*",
        "isRegex": False,
        "targetUrl": "https://api-backend.example.com",
        "cost": 2,
        "description": "Standard API endpoint",
    },
    {
        "id": "complex-target",
        "name": "Complex API",
        "pattern": "^/complex/.*$",
        "isRegex": True,
        "targetUrl": "https://complex-api.example.com",
        "cost": 5,
        "description": "High-resource usage endpoint",
    },
]


def match_target_pattern(path: str, target: TargetDescriptor) -> bool:
    """Check whether ``path`` is served by ``target``."""
    pattern = target.pattern

    if target.is_regex:
        try:
            return re.search(pattern, path) is not None
        except re.error as e:
            logger.error("Invalid target regex", target_id=target.id, pattern=pattern, error=str(e))
            return False

    if pattern.endswith("*"):
        prefix = pattern[:-1]
        # "/api/*" also serves "/api"
        if path == prefix or (prefix.endswith("/") and path == prefix[:-1]):
            return True
        return path.startswith(prefix)

    if pattern.endswith("/"):
        return path == pattern or path == pattern[:-1]

    return path == pattern


def _match_base(target: TargetDescriptor) -> Optional[str]:
    """Literal prefix removed from matched paths, or None to keep the full path."""
    pattern = target.pattern

    if target.is_regex:
        base = pattern
        if base.startswith("^"):
            base = base[1:]
        if base.endswith("$"):
            base = base[:-1]
        if base.endswith(".*"):
            base = base[:-2]
        if _REGEX_METACHARACTERS.search(base):
            return None
        return base

    if pattern.endswith("*"):
        return pattern[:-1]
    return pattern


def extract_relative_path(path: str, target: TargetDescriptor) -> str:
    """Path to append to the target URL once the matched prefix is removed."""
    base = _match_base(target)
    if base is None:
        return path

    if path.startswith(base):
        relative = path[len(base):]
    elif base.endswith("/") and path == base[:-1]:
        relative = ""
    else:
        relative = path

    if not relative:
        return "/"
    if not relative.startswith("/"):
        relative = "/" + relative
    if relative != "/" and relative.endswith("/"):
        relative = relative[:-1]
    return relative


def build_backend_url(target: TargetDescriptor, path: str, query: str = "") -> str:
    """Join the target URL and the relative path, keeping the query string."""
    url = target.target_url.rstrip("/") + extract_relative_path(path, target)
    if query:
        url = f"{url}?{query}"
    return url


class TargetRegistry:
    """Ordered, read-only table of routing targets."""

    def __init__(self, targets: Iterable[TargetDescriptor]):
        self._targets: Dict[str, TargetDescriptor] = {}
        for target in targets:
            if target.id in self._targets:
                raise ValueError(f"Duplicate target id: {target.id}")
            self._targets[target.id] = target

    @classmethod
    def from_dicts(cls, entries: Iterable[Dict]) -> "TargetRegistry":
        return cls(TargetDescriptor.model_validate(entry) for entry in entries)

    @classmethod
    def from_yaml(cls, path: str) -> "TargetRegistry":
        """Load a ``targets:`` list from a YAML file."""
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        table = TargetTable.model_validate(data)
        logger.info("Loaded target table", path=path, targets=len(table.targets))
        return cls(table.targets)

    @classmethod
    def load(cls, targets_file: Optional[str] = None) -> "TargetRegistry":
        if targets_file:
            return cls.from_yaml(targets_file)
        return cls.from_dicts(DEFAULT_TARGETS)

    def list(self) -> List[TargetDescriptor]:
        return list(self._targets.values())

    def __len__(self) -> int:
        return len(self._targets)

    def __contains__(self, target_id: str) -> bool:
        return target_id in self._targets

    def get_target(self, target_id: str) -> TargetDescriptor:
        target = self._targets.get(target_id)
        if target is None:
            raise TargetNotFoundError(details={"target_id": target_id})
        return target

    def find_target(self, path: str) -> TargetDescriptor:
        """First registered target whose pattern matches ``path``."""
        for target in self._targets.values():
            if match_target_pattern(path, target):
                return target
        logger.debug("No target for path", path=path)
        raise TargetNotFoundError(details={"path": path})

    def resolve(self, path: str, target_id: Optional[str] = None) -> TargetDescriptor:
        """Resolve the target for a request.

        A key bound to ``target_id`` only reaches that target, and only on
        paths its pattern serves. Unbound keys are routed by path.
        """
        if not target_id:
            return self.find_target(path)

        target = self.get_target(target_id)
        if not match_target_pattern(path, target):
            logger.info("Bound target does not serve path", target_id=target_id, path=path)
            raise TargetNotFoundError(details={"target_id": target_id, "path": path})
        return target
