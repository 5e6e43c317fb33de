"""Restartable timer used for stall warnings and change debouncing."""

from __future__ import annotations

import asyncio
import typing as typ


class Heartbeat:
    """Call ``callback(name)`` every ``interval`` seconds until stopped.

    The timer never interrupts anything; it only reports. ``restart`` pushes
    the next beat a full interval into the future, which is what makes it
    usable as a debounce window.
    """

    def __init__(
        self,
        name: str,
        callback: typ.Callable[[str], None],
        interval: float,
        *,
        repeat: bool = True,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.name = name
        self.callback = callback
        self.interval = interval
        self.repeat = repeat
        self._loop = loop or asyncio.get_running_loop()
        self._handle: asyncio.TimerHandle | None = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> Heartbeat:
        self.stop()
        self._handle = self._loop.call_later(self.interval, self._beat)
        return self

    def restart(self) -> None:
        self.start()

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _beat(self) -> None:
        self._handle = None
        if self.repeat:
            self._handle = self._loop.call_later(self.interval, self._beat)
        self.callback(self.name)


__all__ = ["Heartbeat"]
