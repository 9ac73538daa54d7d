"""JSON-lines wire protocol between the plugin process and its host.

Plugin -> host (stdout), one JSON object per line:
    {"type": "handshake", "protocol_version": "v2", "plugin_name": ..., "capabilities": {...}}
    {"type": "response", "request_id": ..., "ok": true,  "output": {...}}
    {"type": "response", "request_id": ..., "ok": false, "error": {"code": ..., "message": ...}}
    {"type": "event", "stream_id": ..., "event": "packet", "data": <frame>}
    {"type": "event", "stream_id": ..., "event": "end", "ok": bool, "error"?: {...}}

Host -> plugin (stdin):
    {"request_id": ..., "op": ..., "input": {...}}
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import sys
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping

from sample_datasource.contracts.health import CheckHealthRequest
from sample_datasource.contracts.plugin import PluginContext
from sample_datasource.contracts.query import DataQuery, QueryDataRequest
from sample_datasource.exceptions.core import (
    ConfigError,
    DatasourceError,
    QueryError,
    SessionClosedError,
    StreamDeliveryError,
)
from sample_datasource.runtime.host import PluginHost
from sample_datasource.utils.logger import get_logger, log_exception, log_info, log_warn
from streaming.contracts.stream import (
    PublishStreamRequest,
    RunStreamRequest,
    StreamPacket,
    SubscribeStreamRequest,
)

PROTOCOL_VERSION = "v2"

OP_QUERY = "query.data"
OP_HEALTH = "health.check"
OP_SUBSCRIBE = "stream.subscribe"
OP_PUBLISH = "stream.publish"
OP_RUN = "stream.run"
OP_CANCEL = "stream.cancel"

OPS = (OP_QUERY, OP_HEALTH, OP_SUBSCRIBE, OP_PUBLISH, OP_RUN, OP_CANCEL)

E_UNSUPPORTED = "E_UNSUPPORTED"
E_INVALID = "E_INVALID"
E_INTERNAL = "E_INTERNAL"

Writer = Callable[[dict[str, Any]], None]


class InvalidInput(DatasourceError):
    pass


def stdout_writer(obj: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(obj) + "\n")
    sys.stdout.flush()


def error_code(exc: DatasourceError) -> str:
    if isinstance(exc, InvalidInput):
        return E_INVALID
    if isinstance(exc, SessionClosedError):
        return "E_CLOSED"
    if isinstance(exc, StreamDeliveryError):
        return "E_DELIVERY"
    if isinstance(exc, QueryError):
        return "E_QUERY"
    if isinstance(exc, ConfigError):
        return "E_CONFIG"
    return "E_DATASOURCE"


def _encode_payload(raw: Any) -> bytes:
    if raw is None:
        return b""
    if isinstance(raw, str):
        return raw.encode("utf-8")
    return json.dumps(raw).encode("utf-8")


class _EventSender:
    """Forwards stream packets as wire events."""

    def __init__(self, write: Writer, stream_id: str):
        self._write = write
        self._stream_id = stream_id

    def send(self, packet: StreamPacket) -> None:
        self._write({
            "type": "event",
            "stream_id": self._stream_id,
            "event": "packet",
            "data": json.loads(packet.data),
        })


class StdioServer:
    """
    Serves a PluginHost over JSON lines.

    Non-stream requests are answered in arrival order. `stream.run`
    answers with a stream id and keeps pushing packet events from a
    background task until `stream.cancel`, disposal, or EOF.
    """

    def __init__(
        self,
        host: PluginHost,
        *,
        write: Writer = stdout_writer,
        plugin_name: str = "sample-datasource",
        logger: logging.Logger | None = None,
    ):
        self._host = host
        self._write = write
        self._plugin_name = plugin_name
        self._logger = logger or get_logger(f"sample_datasource.runtime.{self.__class__.__name__}")
        self._streams: dict[str, tuple[asyncio.Task[None], asyncio.Event]] = {}
        self._seq = itertools.count(1)
        self._ops: dict[str, Callable[[str, Mapping[str, Any]], Awaitable[dict[str, Any]]]] = {
            OP_QUERY: self._query,
            OP_HEALTH: self._health,
            OP_SUBSCRIBE: self._subscribe,
            OP_PUBLISH: self._publish,
            OP_RUN: self._run,
            OP_CANCEL: self._cancel,
        }

    @property
    def active_streams(self) -> list[str]:
        return list(self._streams)

    def handshake(self) -> None:
        self._write({
            "type": "handshake",
            "protocol_version": PROTOCOL_VERSION,
            "plugin_name": self._plugin_name,
            "capabilities": {"ops": list(OPS), "streams": [OP_RUN]},
        })

    async def serve(self, lines: AsyncIterator[str]) -> None:
        self.handshake()
        try:
            async for line in lines:
                await self.handle_line(line)
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        for _, cancel in self._streams.values():
            cancel.set()
        tasks = [task for task, _ in self._streams.values()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._host.dispose()

    async def handle_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        try:
            req = json.loads(line)
            if not isinstance(req, dict):
                raise ValueError("request must be a JSON object")
        except ValueError as exc:
            log_warn(self._logger, "wire.bad_request", err=str(exc))
            self._respond_error("", E_INVALID, f"malformed request: {exc}")
            return

        rid = str(req.get("request_id", ""))
        op = str(req.get("op", ""))
        handler = self._ops.get(op)
        if handler is None:
            self._respond_error(rid, E_UNSUPPORTED, f"unsupported op: {op}")
            return

        inp = req.get("input") or {}
        if not isinstance(inp, Mapping):
            self._respond_error(rid, E_INVALID, "input must be a JSON object")
            return
        try:
            output = await handler(rid, inp)
        except DatasourceError as exc:
            log_warn(self._logger, "wire.request_error", op=op, request_id=rid, err=str(exc))
            self._respond_error(rid, error_code(exc), str(exc))
            return
        except Exception as exc:
            log_exception(self._logger, "wire.request_crashed", op=op, request_id=rid)
            self._respond_error(rid, E_INTERNAL, str(exc))
            return
        self._write({"type": "response", "request_id": rid, "ok": True, "output": output})

    def _respond_error(self, rid: str, code: str, message: str) -> None:
        self._write({
            "type": "response",
            "request_id": rid,
            "ok": False,
            "error": {"code": code, "message": message},
        })

    # -------------------------------------------------
    # Input decoding
    # -------------------------------------------------

    @staticmethod
    def _context(inp: Mapping[str, Any]) -> PluginContext:
        raw = inp.get("pluginContext") or {}
        if not isinstance(raw, Mapping):
            raise InvalidInput("pluginContext must be a JSON object")
        try:
            return PluginContext.from_dict(raw)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise InvalidInput(f"invalid pluginContext: {exc}") from exc

    @staticmethod
    def _path(inp: Mapping[str, Any]) -> str:
        path = inp.get("path")
        if not isinstance(path, str) or not path:
            raise InvalidInput("path is required")
        return path

    # -------------------------------------------------
    # Ops
    # -------------------------------------------------

    async def _query(self, rid: str, inp: Mapping[str, Any]) -> dict[str, Any]:
        ctx = self._context(inp)
        try:
            queries = [DataQuery.from_dict(q) for q in inp.get("queries") or []]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise InvalidInput(f"invalid query: {exc}") from exc
        resp = await self._host.query_data(QueryDataRequest(plugin_context=ctx, queries=queries))
        return resp.to_dict()

    async def _health(self, rid: str, inp: Mapping[str, Any]) -> dict[str, Any]:
        result = await self._host.check_health(CheckHealthRequest(plugin_context=self._context(inp)))
        return result.to_dict()

    async def _subscribe(self, rid: str, inp: Mapping[str, Any]) -> dict[str, Any]:
        req = SubscribeStreamRequest(plugin_context=self._context(inp), path=self._path(inp))
        return (await self._host.subscribe_stream(req)).to_dict()

    async def _publish(self, rid: str, inp: Mapping[str, Any]) -> dict[str, Any]:
        req = PublishStreamRequest(
            plugin_context=self._context(inp),
            path=self._path(inp),
            data=_encode_payload(inp.get("data")),
        )
        return (await self._host.publish_stream(req)).to_dict()

    async def _run(self, rid: str, inp: Mapping[str, Any]) -> dict[str, Any]:
        req = RunStreamRequest(plugin_context=self._context(inp), path=self._path(inp))
        stream_id = f"stream-{next(self._seq)}"
        cancel = asyncio.Event()
        task = asyncio.create_task(self._run_stream(stream_id, req, cancel))
        self._streams[stream_id] = (task, cancel)
        log_info(self._logger, "wire.stream_started", stream_id=stream_id, path=req.path)
        return {"stream_id": stream_id}

    async def _cancel(self, rid: str, inp: Mapping[str, Any]) -> dict[str, Any]:
        stream_id = str(inp.get("stream_id", ""))
        entry = self._streams.get(stream_id)
        if entry is None:
            return {"stream_id": stream_id, "cancelled": False}
        entry[1].set()
        return {"stream_id": stream_id, "cancelled": True}

    async def _run_stream(self, stream_id: str, req: RunStreamRequest, cancel: asyncio.Event) -> None:
        end: dict[str, Any] = {"type": "event", "stream_id": stream_id, "event": "end", "ok": True}
        try:
            await self._host.run_stream(req, _EventSender(self._write, stream_id), cancel=cancel)
        except DatasourceError as exc:
            end["ok"] = False
            end["error"] = {"code": error_code(exc), "message": str(exc)}
        except asyncio.CancelledError:
            self._write(end)
            raise
        except Exception as exc:
            log_exception(self._logger, "wire.stream_crashed", stream_id=stream_id)
            end["ok"] = False
            end["error"] = {"code": E_INTERNAL, "message": str(exc)}
        finally:
            self._streams.pop(stream_id, None)
        self._write(end)
