"""Small observer primitive shared by connections, sessions and players."""
from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventHook(Generic[T]):
    """Ordered list of callbacks receiving a single payload.

    ``subscribe`` returns a handle that removes the callback again; calling it
    more than once is harmless. A callback that raises is logged and the
    remaining callbacks still run.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: list[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def emit(self, payload: T) -> None:
        for callback in list(self._callbacks):
            try:
                callback(payload)
            except Exception:
                logger.exception("Error in %s event handler", self.name)

    def clear(self) -> None:
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"EventHook({self.name!r}, subscribers={len(self._callbacks)})"


__all__ = ["EventHook"]
