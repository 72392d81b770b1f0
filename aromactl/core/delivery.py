"""Acknowledged configuration writes with bounded retry."""

from __future__ import annotations

import itertools
import logging
from concurrent.futures import Future
from dataclasses import dataclass

from aromactl.core.errors import DeliveryFailedError, WriteInProgressError
from aromactl.core.events import WriteCompleted
from aromactl.core.executor import Executor, TimerHandle, cancel_timer, fail, settle
from aromactl.core.model import ConfigPayload, PendingWrite
from aromactl.core.resolver import CharacteristicHandle
from aromactl.core.wire import encode_config
from aromactl.transports.base import BLEAdapter

LOGGER = logging.getLogger(__name__)

DEFAULT_ACK_TIMEOUT_S = 5.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_BACKOFF_S = 1.0


@dataclass(frozen=True)
class Ack:
    payload: ConfigPayload
    attempts: int


class _Delivery:
    def __init__(self, characteristic: CharacteristicHandle, payload: ConfigPayload) -> None:
        self.characteristic = characteristic
        self.payload = payload
        self.data = encode_config(payload)
        self.future: Future[Ack] = Future()
        self.pending: PendingWrite | None = None
        self.attempts = 0
        self.timer: TimerHandle | None = None
        self.last_error = ""


def _key(characteristic: CharacteristicHandle) -> tuple[str, str]:
    return characteristic.identifier, characteristic.characteristic_uuid


class DeliveryPipeline:
    """Writes configuration records, one in flight per characteristic.

    Each attempt gets its own write id and only the completion carrying that
    id settles it. A failed or unacknowledged attempt is retried after a
    linear backoff (``backoff``, ``2 * backoff``, ...) until ``max_retries``
    retries are spent.
    """

    def __init__(
        self,
        executor: Executor,
        adapter: BLEAdapter,
        *,
        ack_timeout: float = DEFAULT_ACK_TIMEOUT_S,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: float = DEFAULT_BACKOFF_S,
        with_response: bool = True,
    ) -> None:
        self._executor = executor
        self._adapter = adapter
        self.ack_timeout = ack_timeout
        self.max_retries = max_retries
        self.backoff = backoff
        self.with_response = with_response
        self._write_ids = itertools.count(1)
        self._inflight: dict[tuple[str, str], _Delivery] = {}
        self._by_write_id: dict[int, _Delivery] = {}

    def send(self, characteristic: CharacteristicHandle, payload: ConfigPayload) -> Future[Ack]:
        key = _key(characteristic)
        if key in self._inflight:
            raise WriteInProgressError(
                f"A configuration write to {characteristic.identifier} is already in progress"
            )
        delivery = _Delivery(characteristic, payload)
        self._inflight[key] = delivery
        LOGGER.info(
            "Sending intensity=%d interval=%d to %s",
            payload.intensity,
            payload.interval,
            characteristic.identifier,
        )
        self._write(delivery)
        return delivery.future

    def pending(self, characteristic: CharacteristicHandle) -> PendingWrite | None:
        delivery = self._inflight.get(_key(characteristic))
        return delivery.pending if delivery else None

    def cancel(self, characteristic: CharacteristicHandle | None = None) -> None:
        """Discard pending writes (all of them when ``characteristic`` is None)."""
        if characteristic is None:
            deliveries = list(self._inflight.values())
        else:
            delivery = self._inflight.get(_key(characteristic))
            deliveries = [delivery] if delivery else []
        for delivery in deliveries:
            LOGGER.info("Cancelling pending write to %s", delivery.characteristic.identifier)
            self._release(delivery)
            delivery.future.cancel()

    def handle_write_completed(self, event: WriteCompleted) -> None:
        delivery = self._by_write_id.get(event.write_id)
        if delivery is None or delivery.characteristic.identifier != event.identifier:
            LOGGER.debug("Ignoring completion for unknown write %s on %s", event.write_id, event.identifier)
            return
        self._forget_write(delivery)
        cancel_timer(delivery.timer)
        delivery.timer = None
        if event.error:
            self._attempt_failed(delivery, event.error)
            return
        self._release(delivery)
        LOGGER.info("Configuration acknowledged after %d attempt(s)", delivery.attempts)
        settle(delivery.future, Ack(payload=delivery.payload, attempts=delivery.attempts))

    def _write(self, delivery: _Delivery) -> None:
        delivery.timer = None
        delivery.attempts += 1
        write_id = next(self._write_ids)
        delivery.pending = PendingWrite(
            payload=delivery.payload,
            attempt=delivery.attempts,
            deadline=self._executor.time() + self.ack_timeout,
            write_id=write_id,
        )
        self._by_write_id[write_id] = delivery
        delivery.timer = self._executor.call_later(self.ack_timeout, self._ack_timed_out, delivery, write_id)
        LOGGER.debug("Write attempt %d (id %d) payload=%s", delivery.attempts, write_id, delivery.data.hex())
        try:
            self._adapter.write(
                delivery.characteristic.identifier,
                delivery.characteristic.characteristic_uuid,
                delivery.data,
                write_id,
                with_response=self.with_response,
            )
        except Exception as exc:
            self._forget_write(delivery)
            cancel_timer(delivery.timer)
            delivery.timer = None
            self._attempt_failed(delivery, str(exc))

    def _ack_timed_out(self, delivery: _Delivery, write_id: int) -> None:
        if delivery.pending is None or delivery.pending.write_id != write_id:
            return
        delivery.timer = None
        self._forget_write(delivery)
        self._attempt_failed(delivery, f"no acknowledgement within {self.ack_timeout:g}s")

    def _attempt_failed(self, delivery: _Delivery, error: str) -> None:
        delivery.last_error = error
        LOGGER.warning("Write attempt %d failed: %s", delivery.attempts, error)
        if delivery.attempts > self.max_retries:
            self._release(delivery)
            fail(delivery.future, DeliveryFailedError(error, delivery.attempts))
            return
        delay = self.backoff * delivery.attempts
        delivery.pending = None
        delivery.timer = self._executor.call_later(delay, self._write, delivery)

    def _forget_write(self, delivery: _Delivery) -> None:
        if delivery.pending is not None:
            self._by_write_id.pop(delivery.pending.write_id, None)

    def _release(self, delivery: _Delivery) -> None:
        cancel_timer(delivery.timer)
        delivery.timer = None
        self._forget_write(delivery)
        delivery.pending = None
        key = _key(delivery.characteristic)
        if self._inflight.get(key) is delivery:
            del self._inflight[key]
