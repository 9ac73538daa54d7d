from __future__ import annotations

import asyncio
import logging

from sample_datasource.contracts.health import CheckHealthRequest, CheckHealthResult, HealthProbe
from sample_datasource.contracts.plugin import PluginContext
from sample_datasource.contracts.query import QueryDataRequest, QueryDataResponse
from sample_datasource.exceptions.core import ConfigError
from sample_datasource.health.reporter import HealthReporter, RandomHealthProbe
from sample_datasource.query.handlers import build_query_handler
from sample_datasource.query.orchestrator import QueryOrchestrator
from sample_datasource.utils.config import DatasourceSettings
from sample_datasource.utils.logger import get_logger, log_instance, log_stream
from streaming.contracts.channel import datasource_channel
from streaming.contracts.stream import (
    PublishPolicy,
    PublishStreamRequest,
    PublishStreamResponse,
    RunStreamRequest,
    StreamPacketSender,
    SubscribePolicy,
    SubscribeStreamRequest,
    SubscribeStreamResponse,
    accept_all,
    deny_all,
)
from streaming.session import StreamSession


class SampleDatasource:
    """
    One configured datasource instance.

    Owns the parsed settings and a `closed` token. Disposing the instance
    sets the token, which terminates every stream session it started with
    SessionClosedError. The instance is not reused after disposal; the
    registry builds a fresh one.
    """

    def __init__(
        self,
        settings: DatasourceSettings,
        *,
        datasource_id: int = 0,
        health_probe: HealthProbe | None = None,
        subscribe_policy: SubscribePolicy = accept_all,
        publish_policy: PublishPolicy = deny_all,
        logger: logging.Logger | None = None,
    ):
        self.settings = settings
        self.datasource_id = int(datasource_id)
        self._logger = logger or get_logger(f"sample_datasource.{self.__class__.__name__}")
        self._closed = asyncio.Event()
        try:
            handler = build_query_handler(settings.query_handler)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        self._orchestrator = QueryOrchestrator(handler, policy=settings.batch_error_policy)
        self._health = HealthReporter(health_probe or RandomHealthProbe())
        self._subscribe_policy = subscribe_policy
        self._publish_policy = publish_policy

    @classmethod
    def from_context(cls, ctx: PluginContext) -> "SampleDatasource":
        """Instance factory for the registry: parses `jsonData` of the context's datasource."""
        ds = ctx.datasource_instance_settings
        if ds is None:
            return cls(DatasourceSettings())
        return cls(DatasourceSettings.parse(ds.json_data), datasource_id=ds.id)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def dispose(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        log_instance(self._logger, "instance.closed", datasource_id=self.datasource_id)

    # -------------------------------------------------
    # Query / health
    # -------------------------------------------------

    def query_data(self, req: QueryDataRequest) -> QueryDataResponse:
        return self._orchestrator.query_data(req)

    def check_health(self, req: CheckHealthRequest) -> CheckHealthResult:
        return self._health.check(req)

    # -------------------------------------------------
    # Streaming
    # -------------------------------------------------

    def subscribe_stream(self, req: SubscribeStreamRequest) -> SubscribeStreamResponse:
        resp = self._subscribe_policy(req)
        log_stream(
            self._logger,
            "stream.subscribe",
            path=req.path,
            status=resp.status,
            use_run_stream=resp.use_run_stream,
        )
        return resp

    def publish_stream(self, req: PublishStreamRequest) -> PublishStreamResponse:
        resp = self._publish_policy(req)
        log_stream(self._logger, "stream.publish", path=req.path, status=resp.status)
        return resp

    def new_session(self, path: str) -> StreamSession:
        return StreamSession(
            channel=datasource_channel(self.datasource_id, path),
            closed=self._closed,
            interval_ms=self.settings.stream_interval_ms,
            send_policy=self.settings.send_policy,
        )

    async def run_stream(
        self,
        req: RunStreamRequest,
        sender: StreamPacketSender,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """
        Push packets for `req.path` until cancelled or closed.

        Returns None when `cancel` is set; raises SessionClosedError when
        this instance is disposed (also when it already was).
        """
        session = self.new_session(req.path)
        await session.run(sender, cancel=cancel)
