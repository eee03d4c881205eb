from __future__ import annotations
from collections import deque
from typing import Deque, List, Optional


class Memory:
    """Index-addressed, growable string cells shared by every interpreter instance."""

    def __init__(self) -> None:
        self._cells: List[str] = []

    def allocate(self, amount: int, fill: str = "0") -> int:
        self._cells.extend([fill] * amount)
        return len(self._cells)

    def free(self, amount: int) -> int:
        # Cells are always released from the tail.
        removed = min(amount, len(self._cells))
        if removed > 0:
            del self._cells[len(self._cells) - removed :]
        return removed

    def exists(self, index: int) -> bool:
        return 0 <= index < len(self._cells)

    def get(self, index: int) -> str:
        return self._cells[index]

    def set(self, index: int, value: str) -> None:
        self._cells[index] = value

    def snapshot(self) -> List[str]:
        return list(self._cells)

    def __len__(self) -> int:
        return len(self._cells)


class Stack:
    def __init__(self) -> None:
        self._items: List[str] = []

    def push(self, value: str) -> None:
        self._items.append(value)

    def pop(self) -> Optional[str]:
        if not self._items:
            return None
        return self._items.pop()

    def __len__(self) -> int:
        return len(self._items)


class Queue:
    def __init__(self) -> None:
        self._items: Deque[str] = deque()

    def push(self, value: str) -> None:
        self._items.append(value)

    def pop(self) -> Optional[str]:
        if not self._items:
            return None
        return self._items.popleft()

    def __len__(self) -> int:
        return len(self._items)
