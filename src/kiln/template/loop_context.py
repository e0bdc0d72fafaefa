"""The ``loop`` variable of ``{% for %}`` blocks."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any


class LoopContext:
    """Iteration metadata exposed as ``loop`` inside ``{% for %}``.

    The sequence is materialized up front so ``length``, ``last`` and
    ``revindex`` are known on every iteration.

    Example:
        ```
        {% for user in users %}
            <li class="{{ loop.cycle('odd', 'even') }}">{{ loop.index }}/{{ loop.length }}</li>
        {% endfor %}
        ```
    """

    __slots__ = ("_items", "_position")

    def __init__(self, items: list[Any]) -> None:
        self._items = items
        self._position = -1

    def __iter__(self) -> Iterator[Any]:
        for position, item in enumerate(self._items):
            self._position = position
            yield item

    def __len__(self) -> int:
        return len(self._items)

    @property
    def index0(self) -> int:
        return self._position

    @property
    def index(self) -> int:
        return self._position + 1

    @property
    def length(self) -> int:
        return len(self._items)

    @property
    def revindex0(self) -> int:
        return len(self._items) - self._position - 1

    @property
    def revindex(self) -> int:
        return len(self._items) - self._position

    @property
    def first(self) -> bool:
        return self._position == 0

    @property
    def last(self) -> bool:
        return self._position == len(self._items) - 1

    @property
    def previtem(self) -> Any:
        return self._items[self._position - 1] if self._position > 0 else None

    @property
    def nextitem(self) -> Any:
        if self._position + 1 < len(self._items):
            return self._items[self._position + 1]
        return None

    def cycle(self, *values: Any) -> Any:
        """Pick ``values[index0 % len(values)]``; ``None`` without values."""
        if not values:
            return None
        return values[self._position % len(values)]

    def __repr__(self) -> str:
        return f"<LoopContext {self.index}/{self.length}>"
