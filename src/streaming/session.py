from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any

import pandas as pd

from sample_datasource.data.builder import QUERY_VALUES, build_stream_frame
from sample_datasource.data.frame import Frame
from sample_datasource.exceptions.core import SessionClosedError, StreamDeliveryError
from sample_datasource.utils.config import (
    DEFAULT_STREAM_INTERVAL_MS,
    SendErrorMode,
    SendFailurePolicy,
)
from sample_datasource.utils.logger import get_logger, log_debug, log_error, log_stream, log_warn
from streaming.contracts.channel import Channel
from streaming.contracts.stream import StreamPacket, StreamPacketSender

_LOG_SAMPLE_EVERY = 100


class SessionState(Enum):
    SUBSCRIBING = "subscribing"
    RUNNING = "running"
    TERMINATED = "terminated"


class _Wake(Enum):
    TICK = "tick"
    CANCELLED = "cancelled"
    CLOSED = "closed"


def tick_value(tick: int) -> int:
    """Alternates between the two fixed magnitudes: 10, 20, 10, ..."""
    low, high = QUERY_VALUES
    return low if tick % 2 == 0 else high


class StreamSession:
    """
    One live subscription's push loop.

    Lifecycle:
        SUBSCRIBING -> RUNNING -> TERMINATED

    Every `interval_ms` the loop refreshes the one-row frame (time=now,
    values alternating 10/20), serializes it and hands a packet to the
    sender. Between ticks it waits on the earliest of:
      - the tick timer
      - `cancel` (caller went away)      -> return None
      - `closed` (owning instance disposed) -> raise SessionClosedError

    Both tokens are checked at every iteration boundary; if both are set,
    cancellation wins. Cancelling the task itself propagates CancelledError.

    Failure handling per tick:
      - serialization error -> logged, tick skipped, loop continues
      - send error          -> SendFailurePolicy decides (continue / give up)

    Non-responsibilities:
      - Does NOT decide whether a subscription is accepted.
      - Does NOT share state with other sessions; the counter is per session.
    """

    def __init__(
        self,
        *,
        channel: Channel,
        closed: asyncio.Event,
        interval_ms: int = DEFAULT_STREAM_INTERVAL_MS,
        send_policy: SendFailurePolicy | None = None,
        logger: logging.Logger | None = None,
    ):
        if interval_ms <= 0:
            raise ValueError(f"stream interval must be > 0ms, got {interval_ms}")
        self._channel = channel
        self._closed = closed
        self._interval_ms = int(interval_ms)
        self._send_policy = send_policy or SendFailurePolicy()
        self._logger = logger or get_logger(f"streaming.{self.__class__.__name__}")
        self._state = SessionState.SUBSCRIBING
        self._ticks = 0
        self._sent = 0
        self._consecutive_failures = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def sent(self) -> int:
        return self._sent

    @property
    def channel(self) -> Channel:
        return self._channel

    async def run(self, sender: StreamPacketSender, *, cancel: asyncio.Event | None = None) -> None:
        if self._state is not SessionState.SUBSCRIBING:
            raise RuntimeError(f"stream session already {self._state.value}")
        cancel = cancel or asyncio.Event()
        self._state = SessionState.RUNNING
        log_stream(
            self._logger,
            "stream.run_start",
            channel=str(self._channel),
            interval_ms=self._interval_ms,
            send_policy=self._send_policy.model_dump(),
        )
        stop_reason = "exit"
        frame = build_stream_frame()
        try:
            while True:
                wake = await self._wait_next(cancel)
                if wake is _Wake.CANCELLED:
                    stop_reason = "cancelled"
                    return
                if wake is _Wake.CLOSED:
                    stop_reason = "closed"
                    log_stream(self._logger, "stream.datasource_closed", channel=str(self._channel))
                    raise SessionClosedError("datasource closed")
                await self._tick(frame, sender)
        except asyncio.CancelledError:
            stop_reason = "cancelled"
            raise
        except StreamDeliveryError:
            stop_reason = "delivery_failed"
            raise
        finally:
            self._state = SessionState.TERMINATED
            log_stream(
                self._logger,
                "stream.run_stop",
                channel=str(self._channel),
                stop_reason=stop_reason,
                ticks=self._ticks,
                sent=self._sent,
            )

    async def _wait_next(self, cancel: asyncio.Event) -> _Wake:
        if cancel.is_set():
            return _Wake.CANCELLED
        if self._closed.is_set():
            return _Wake.CLOSED

        waiters = [asyncio.ensure_future(cancel.wait()), asyncio.ensure_future(self._closed.wait())]
        try:
            await asyncio.wait(
                waiters,
                timeout=self._interval_ms / 1000.0,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for w in waiters:
                if not w.done():
                    w.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

        if cancel.is_set():
            return _Wake.CANCELLED
        if self._closed.is_set():
            return _Wake.CLOSED
        return _Wake.TICK

    async def _tick(self, frame: Frame, sender: StreamPacketSender) -> None:
        tick = self._ticks
        frame.set_value("time", 0, pd.Timestamp.now(tz="UTC"))
        frame.set_value("values", 0, tick_value(tick))
        self._ticks += 1

        try:
            payload = frame.to_json()
        except (TypeError, ValueError) as exc:
            log_warn(
                self._logger,
                "stream.tick_encode_error",
                channel=str(self._channel),
                tick=tick,
                err_type=type(exc).__name__,
                err=str(exc),
            )
            return

        try:
            r = sender.send(StreamPacket(data=payload))
            if inspect.isawaitable(r):
                await r
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._on_send_failure(tick, exc)
            return

        self._consecutive_failures = 0
        self._sent += 1
        if self._sent % _LOG_SAMPLE_EVERY == 0:
            log_stream(self._logger, "stream.tick_sent", channel=str(self._channel), tick=tick, sent=self._sent)
        else:
            log_debug(self._logger, "stream.tick_sent", channel=str(self._channel), tick=tick)

    def _on_send_failure(self, tick: int, exc: Exception) -> None:
        self._consecutive_failures += 1
        policy = self._send_policy
        ctx: dict[str, Any] = {
            "channel": str(self._channel),
            "tick": tick,
            "consecutive_failures": self._consecutive_failures,
            "err_type": type(exc).__name__,
            "err": str(exc),
        }
        log_warn(self._logger, "stream.tick_send_error", **ctx)

        if policy.mode is SendErrorMode.ABORT:
            log_error(self._logger, "stream.delivery_abandoned", policy=policy.mode, **ctx)
            raise StreamDeliveryError(f"send failed on tick {tick}: {exc}") from exc
        if policy.max_consecutive is not None and self._consecutive_failures >= policy.max_consecutive:
            log_error(self._logger, "stream.delivery_abandoned", policy=policy.mode, **ctx)
            raise StreamDeliveryError(
                f"giving up after {self._consecutive_failures} consecutive send failures"
            ) from exc
