"""Bluetooth radio availability tracking."""

from __future__ import annotations

import logging
from collections.abc import Callable

from aromactl.core.errors import AdapterUnavailableError
from aromactl.core.model import AdapterState

LOGGER = logging.getLogger(__name__)

StateListener = Callable[[AdapterState, AdapterState], None]


class AdapterMonitor:
    """Read-only view of the platform's adapter state.

    The state only changes through :meth:`platform_reported`, which the
    session feeds with the adapter's own state events.
    """

    def __init__(self, initial: AdapterState = AdapterState.UNKNOWN) -> None:
        self._state = initial
        self._listeners: list[StateListener] = []

    def current_state(self) -> AdapterState:
        return self._state

    @property
    def powered_on(self) -> bool:
        return self._state is AdapterState.POWERED_ON

    def require_powered_on(self) -> None:
        if not self.powered_on:
            raise AdapterUnavailableError(self._state)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def platform_reported(self, state: AdapterState) -> None:
        previous = self._state
        if state is previous:
            return
        self._state = state
        LOGGER.info("Bluetooth adapter %s -> %s", previous, state)
        for listener in list(self._listeners):
            listener(previous, state)
