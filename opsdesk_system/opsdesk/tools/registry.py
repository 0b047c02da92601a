from typing import Iterable, Iterator

from opsdesk.tools.models import ToolDescriptor


class ToolCatalog:
    """Tools advertised by the backend for the current session. Immutable once built."""

    def __init__(self, tools: Iterable[ToolDescriptor] = ()):
        self._tools: dict[str, ToolDescriptor] = {}
        for t in tools:
            self._tools.setdefault(t.name, t)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def get(self, name: str) -> ToolDescriptor:
        if name not in self._tools:
            raise KeyError(f"Unknown tool: {name}. Known: {self.names()}")
        return self._tools[name]

    def find(self, *fragments: str) -> list[ToolDescriptor]:
        """Tools whose name contains every fragment (case-insensitive)."""
        frags = [f.lower() for f in fragments]
        return [t for t in self._tools.values() if all(f in t.name.lower() for f in frags)]
