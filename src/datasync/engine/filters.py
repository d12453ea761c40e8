"""Include/exclude filters for scoping a sync run to a subset of keys."""

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Dict, Tuple

from ..models.sync import Item


@dataclass(frozen=True)
class KeyFilter:
    """
    Glob filters applied to keys at enumeration.

    A key is kept if it matches any include pattern (or there are none) and
    matches no exclude pattern. Patterns use ``fnmatch`` syntax, where ``*``
    also matches ``/``.
    """

    include: Tuple[str, ...] = field(default_factory=tuple)
    exclude: Tuple[str, ...] = field(default_factory=tuple)

    def is_empty(self) -> bool:
        """Check if no filters are set."""
        return not self.include and not self.exclude

    def matches(self, key: str) -> bool:
        if self.include and not any(fnmatchcase(key, pattern) for pattern in self.include):
            return False
        return not any(fnmatchcase(key, pattern) for pattern in self.exclude)

    def apply(self, items: Dict[str, Item]) -> Dict[str, Item]:
        if self.is_empty():
            return dict(items)
        return {key: item for key, item in items.items() if self.matches(key)}
