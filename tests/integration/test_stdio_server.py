from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Callable

import pytest

from sample_datasource.contracts.health import HealthStatus
from sample_datasource.contracts.plugin import PluginContext
from sample_datasource.health.reporter import StaticHealthProbe
from sample_datasource.runtime.datasource import SampleDatasource
from sample_datasource.runtime.host import PluginHost
from sample_datasource.runtime.stdio import E_INTERNAL, E_INVALID, E_UNSUPPORTED, OPS, StdioServer
from sample_datasource.utils.config import DatasourceSettings

JAN_1_MS = 1704067200000
JAN_2_MS = 1704153600000


def _factory(ctx: PluginContext) -> SampleDatasource:
    ds = ctx.datasource_instance_settings
    assert ds is not None
    return SampleDatasource(
        DatasourceSettings.parse(ds.json_data),
        datasource_id=ds.id,
        health_probe=StaticHealthProbe(HealthStatus.OK, "Data source is working"),
    )


def _ctx(ds_id: int = 1, *, updated: int = JAN_1_MS, json_data: Any = None) -> dict[str, Any]:
    return {
        "orgId": 1,
        "pluginId": "sample-datasource",
        "dataSourceInstanceSettings": {
            "id": ds_id,
            "uid": f"uid-{ds_id}",
            "jsonData": json_data if json_data is not None else {"streamIntervalMs": 20},
            "updated": updated,
        },
    }


def _line(rid: str, op: str, **inp: Any) -> str:
    return json.dumps({"request_id": rid, "op": op, "input": inp})


class _Wire:
    def __init__(self) -> None:
        self.out: list[dict[str, Any]] = []

    def __call__(self, obj: dict[str, Any]) -> None:
        # the real writer serializes; keep that contract honest
        self.out.append(json.loads(json.dumps(obj)))

    def response(self, rid: str) -> dict[str, Any]:
        return next(o for o in self.out if o["type"] == "response" and o["request_id"] == rid)

    def events(self, stream_id: str, kind: str) -> list[dict[str, Any]]:
        return [
            o for o in self.out
            if o["type"] == "event" and o["stream_id"] == stream_id and o["event"] == kind
        ]


async def _wait_until(pred: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not pred():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.fixture
def wire() -> _Wire:
    return _Wire()


@pytest.fixture
def server(wire: _Wire) -> StdioServer:
    return StdioServer(PluginHost(_factory), write=wire, plugin_name="sample-test")


def test_handshake_lists_ops(server: StdioServer, wire: _Wire):
    server.handshake()
    hs = wire.out[0]
    assert hs["type"] == "handshake"
    assert hs["plugin_name"] == "sample-test"
    assert hs["capabilities"]["ops"] == list(OPS)


@pytest.mark.asyncio
async def test_unsupported_op(server: StdioServer, wire: _Wire):
    await server.handle_line(_line("r1", "nope"))
    resp = wire.response("r1")
    assert resp["ok"] is False
    assert resp["error"]["code"] == E_UNSUPPORTED


@pytest.mark.asyncio
async def test_malformed_lines_are_rejected(server: StdioServer, wire: _Wire):
    await server.handle_line("{not json")
    await server.handle_line("[1, 2]")
    await server.handle_line("   ")
    assert len(wire.out) == 2
    assert all(o["request_id"] == "" and o["error"]["code"] == E_INVALID for o in wire.out)


@pytest.mark.asyncio
async def test_missing_path_is_invalid(server: StdioServer, wire: _Wire):
    await server.handle_line(_line("r1", "stream.subscribe", pluginContext=_ctx()))
    assert wire.response("r1")["error"]["code"] == E_INVALID


@pytest.mark.asyncio
async def test_query_data_roundtrip(server: StdioServer, wire: _Wire):
    queries = [
        {"refId": "A", "json": {"queryText": "x"}, "timeRange": {"from": JAN_1_MS, "to": JAN_2_MS}},
        {"refId": "B", "json": {"withStreaming": True}, "timeRange": {"from": JAN_1_MS, "to": JAN_2_MS}},
    ]
    await server.handle_line(_line("q1", "query.data", pluginContext=_ctx(), queries=queries))

    resp = wire.response("q1")
    assert resp["ok"] is True
    results = resp["output"]["results"]
    frame_a = results["A"]["frames"][0]
    assert frame_a["schema"]["name"] == "response"
    assert frame_a["data"]["values"] == [[JAN_1_MS, JAN_2_MS], [10, 20]]
    assert "meta" not in frame_a["schema"]
    assert results["B"]["frames"][0]["schema"]["meta"] == {"channel": "ds/1/stream"}


@pytest.mark.asyncio
async def test_bad_settings_surface_as_config_error(server: StdioServer, wire: _Wire):
    ctx = _ctx(json_data={"queryHandler": "missing"})
    await server.handle_line(_line("q1", "query.data", pluginContext=ctx, queries=[]))
    resp = wire.response("q1")
    assert resp["ok"] is False
    assert resp["error"]["code"] == "E_CONFIG"


@pytest.mark.asyncio
async def test_health_subscribe_publish(server: StdioServer, wire: _Wire):
    await server.handle_line(_line("h1", "health.check", pluginContext=_ctx()))
    await server.handle_line(_line("s1", "stream.subscribe", pluginContext=_ctx(), path="stream"))
    await server.handle_line(_line("p1", "stream.publish", pluginContext=_ctx(), path="stream", data={"x": 1}))

    assert wire.response("h1")["output"] == {"status": "ok", "message": "Data source is working"}
    assert wire.response("s1")["output"] == {"status": "ok", "use_run_stream": True}
    assert wire.response("p1")["output"] == {"status": "permission_denied"}


@pytest.mark.asyncio
async def test_run_then_cancel_ends_cleanly(server: StdioServer, wire: _Wire):
    await server.handle_line(_line("r1", "stream.run", pluginContext=_ctx(), path="stream"))
    stream_id = wire.response("r1")["output"]["stream_id"]
    assert server.active_streams == [stream_id]

    await _wait_until(lambda: len(wire.events(stream_id, "packet")) >= 3)
    await server.handle_line(_line("c1", "stream.cancel", stream_id=stream_id))
    assert wire.response("c1")["output"] == {"stream_id": stream_id, "cancelled": True}

    await _wait_until(lambda: bool(wire.events(stream_id, "end")))
    end = wire.events(stream_id, "end")[0]
    assert end["ok"] is True
    assert server.active_streams == []

    values = [e["data"]["data"]["values"][1][0] for e in wire.events(stream_id, "packet")]
    assert values[:3] == [10, 20, 10]

    await server.handle_line(_line("c2", "stream.cancel", stream_id=stream_id))
    assert wire.response("c2")["output"]["cancelled"] is False


@pytest.mark.asyncio
async def test_settings_change_closes_running_stream(server: StdioServer, wire: _Wire):
    await server.handle_line(_line("r1", "stream.run", pluginContext=_ctx(), path="stream"))
    stream_id = wire.response("r1")["output"]["stream_id"]
    await _wait_until(lambda: bool(wire.events(stream_id, "packet")))

    await server.handle_line(_line("h1", "health.check", pluginContext=_ctx(updated=JAN_2_MS)))

    await _wait_until(lambda: bool(wire.events(stream_id, "end")))
    end = wire.events(stream_id, "end")[0]
    assert end["ok"] is False
    assert end["error"]["code"] == "E_CLOSED"


@pytest.mark.asyncio
async def test_eof_shuts_down_streams_and_host(wire: _Wire):
    host = PluginHost(_factory)
    server = StdioServer(host, write=wire)

    async def lines() -> AsyncIterator[str]:
        yield _line("r1", "stream.run", pluginContext=_ctx(), path="stream")
        await _wait_until(lambda: any(o.get("event") == "packet" for o in wire.out))

    await asyncio.wait_for(server.serve(lines()), timeout=3.0)

    assert wire.out[0]["type"] == "handshake"
    stream_id = wire.response("r1")["output"]["stream_id"]
    end = wire.events(stream_id, "end")
    assert len(end) == 1 and end[0]["ok"] is True
    assert server.active_streams == []
    assert len(host.instances) == 0


@pytest.mark.parametrize(
    "line, code",
    [
        (json.dumps({"request_id": "x1", "op": "health.check", "input": [1]}), E_INVALID),
        (_line("x1", "health.check", pluginContext="oops"), E_INVALID),
        (_line("x1", "query.data", pluginContext=_ctx(), queries="oops"), E_INVALID),
        (_line("x1", "health.check", pluginContext=_ctx(json_data=[1])), "E_CONFIG"),
    ],
)
@pytest.mark.asyncio
async def test_malformed_input_is_answered_and_server_keeps_serving(
    server: StdioServer, wire: _Wire, line: str, code: str
):
    await server.handle_line(line)
    resp = wire.response("x1")
    assert resp["ok"] is False
    assert resp["error"]["code"] == code

    await server.handle_line(_line("h1", "health.check", pluginContext=_ctx(2)))
    assert wire.response("h1")["ok"] is True


@pytest.mark.asyncio
async def test_non_object_query_json_fails_only_that_query(server: StdioServer, wire: _Wire):
    queries = [
        {"refId": "A", "json": [1, 2], "timeRange": {"from": JAN_1_MS, "to": JAN_2_MS}},
        {"refId": "B", "json": {}, "timeRange": {"from": JAN_1_MS, "to": JAN_2_MS}},
    ]
    await server.handle_line(_line("q1", "query.data", pluginContext=_ctx(), queries=queries))

    resp = wire.response("q1")
    assert resp["ok"] is True
    results = resp["output"]["results"]
    assert results["A"]["frames"] == []
    assert "error" in results["A"]
    assert results["B"]["frames"][0]["data"]["values"][1] == [10, 20]


@pytest.mark.asyncio
async def test_unexpected_error_is_answered_as_internal(wire: _Wire):
    def factory(ctx: PluginContext) -> SampleDatasource:
        raise RuntimeError("factory bug")

    server = StdioServer(PluginHost(factory), write=wire)
    await server.handle_line(_line("h1", "health.check", pluginContext=_ctx()))
    resp = wire.response("h1")
    assert resp["ok"] is False
    assert resp["error"] == {"code": E_INTERNAL, "message": "factory bug"}
