"""A guard that runs a callback unless it is disarmed before leaving its scope."""

from __future__ import annotations

from collections.abc import Callable
from types import TracebackType


class CrashGuard:
    """Context manager that calls ``callback`` on exit while still armed."""

    def __init__(self, callback: Callable[[], object]) -> None:
        self._callback = callback
        self.armed = True

    def disarm(self) -> None:
        self.armed = False

    def __enter__(self) -> CrashGuard:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if self.armed:
            self._callback()
        return False