"""Host lifecycle signals and the flush-before-leaving trigger."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class LifecycleSignal(Enum):
    FOCUS = "focus"
    VISIBLE = "visible"
    BLUR = "blur"
    HIDDEN = "hidden"
    UNLOAD = "unload"


class LifecycleState(Enum):
    ACTIVE = "active"
    HIDDEN = "hidden"
    LEAVING = "leaving"


# Leave signals and whether the host stays reachable afterwards
LEAVE_SIGNALS = {
    LifecycleSignal.BLUR: True,
    LifecycleSignal.HIDDEN: True,
    LifecycleSignal.UNLOAD: False,
}

RESUME_SIGNALS = (LifecycleSignal.FOCUS, LifecycleSignal.VISIBLE)

Listener = Callable[[LifecycleSignal], None]


class LifecycleSource(Protocol):
    def subscribe(self, listener: Listener) -> Callable[[], None]: ...


class LifecycleNotifier:
    """
    In-process lifecycle source.

    The host embedding calls ``emit`` (or one of the shortcuts) from its own
    suspend, resume and shutdown hooks.
    """

    def __init__(self):
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, signal: LifecycleSignal) -> None:
        for listener in list(self._listeners):
            try:
                listener(signal)
            except Exception:
                logger.exception("Lifecycle listener failed on %s", signal.value)

    def focus(self) -> None:
        self.emit(LifecycleSignal.FOCUS)

    def blur(self) -> None:
        self.emit(LifecycleSignal.BLUR)

    def hide(self) -> None:
        self.emit(LifecycleSignal.HIDDEN)

    def show(self) -> None:
        self.emit(LifecycleSignal.VISIBLE)

    def unload(self) -> None:
        self.emit(LifecycleSignal.UNLOAD)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


class LifecycleTrigger:
    """
    Collapses redundant leave signals into one ``on_leave(accessible)`` call.

    Several host signals usually fire for a single real departure. The
    first one sets a guard and calls ``on_leave``; the guard is cleared on
    the next loop tick, or right away by a resume signal, so a later
    departure is not swallowed. An unload still gets through a guard set by
    a recoverable leave, since it is the last chance to flush.
    """

    def __init__(
        self,
        source: LifecycleSource,
        on_leave: Callable[[bool], None],
    ):
        self.on_leave = on_leave
        self.state = LifecycleState.ACTIVE
        # accessible flag of the guarded leave, None when clear
        self._guarded: Optional[bool] = None
        self._reset_handle: Optional[asyncio.Handle] = None
        self._unsubscribe: Optional[Callable[[], None]] = source.subscribe(
            self.handle
        )

    def handle(self, signal: LifecycleSignal) -> None:
        if signal in RESUME_SIGNALS:
            self.state = LifecycleState.ACTIVE
            self._clear_guard()
            return

        accessible = LEAVE_SIGNALS.get(signal)
        if accessible is None:
            return

        self.state = LifecycleState.HIDDEN if accessible else LifecycleState.LEAVING

        if self._guarded is False or (self._guarded and accessible):
            logger.debug("Ignoring redundant %s signal", signal.value)
            return

        self._guarded = accessible
        logger.debug("Host leaving on %s (accessible=%s)", signal.value, accessible)

        try:
            self.on_leave(accessible)
        finally:
            self._schedule_reset()

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def _schedule_reset(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to defer to; nothing else can fire in this turn.
            self._clear_guard()
            return

        if self._reset_handle is None:
            self._reset_handle = loop.call_soon(self._clear_guard)

    def _clear_guard(self) -> None:
        self._guarded = None
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None
