from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from sample_datasource.contracts.plugin import PluginContext


class SubscribeStreamStatus(Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"


class PublishStreamStatus(Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"


@dataclass(frozen=True)
class SubscribeStreamRequest:
    plugin_context: PluginContext
    path: str
    data: bytes | None = None


@dataclass(frozen=True)
class SubscribeStreamResponse:
    """
    Subscribe decision.

    `use_run_stream=True` asks the host to start a run loop for the path
    while subscribers exist. OK without a run loop is valid (e.g. data is
    pushed through publish only).
    """

    status: SubscribeStreamStatus
    use_run_stream: bool = False
    initial_data: bytes | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"status": self.status.value, "use_run_stream": self.use_run_stream}
        if self.initial_data is not None:
            out["initial_data"] = self.initial_data.decode("utf-8")
        return out


@dataclass(frozen=True)
class PublishStreamRequest:
    plugin_context: PluginContext
    path: str
    data: bytes = b""


@dataclass(frozen=True)
class PublishStreamResponse:
    status: PublishStreamStatus
    data: bytes | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"status": self.status.value}
        if self.data is not None:
            out["data"] = self.data.decode("utf-8")
        return out


@dataclass(frozen=True)
class RunStreamRequest:
    plugin_context: PluginContext
    path: str


@dataclass(frozen=True)
class StreamPacket:
    # one serialized frame
    data: bytes


class StreamPacketSender(Protocol):
    """Downstream of a run loop. `send` may be sync or async; raising marks a failed delivery."""

    def send(self, packet: StreamPacket) -> Awaitable[None] | None:
        ...


SubscribePolicy = Callable[[SubscribeStreamRequest], SubscribeStreamResponse]
PublishPolicy = Callable[[PublishStreamRequest], PublishStreamResponse]


# ---------------------------------------------------------------------
# Stock policies
# ---------------------------------------------------------------------

def accept_all(request: SubscribeStreamRequest) -> SubscribeStreamResponse:
    """Accept every subscription and request a run loop."""
    return SubscribeStreamResponse(status=SubscribeStreamStatus.OK, use_run_stream=True)


def accept_paths(*paths: str) -> SubscribePolicy:
    """Accept subscriptions to the given paths only; anything else is NOT_FOUND."""
    allowed = frozenset(paths)

    def policy(request: SubscribeStreamRequest) -> SubscribeStreamResponse:
        if request.path not in allowed:
            return SubscribeStreamResponse(status=SubscribeStreamStatus.NOT_FOUND)
        return SubscribeStreamResponse(status=SubscribeStreamStatus.OK, use_run_stream=True)

    return policy


def deny_all(request: PublishStreamRequest) -> PublishStreamResponse:
    return PublishStreamResponse(status=PublishStreamStatus.PERMISSION_DENIED)
