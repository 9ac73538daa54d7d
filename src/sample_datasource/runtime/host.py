from __future__ import annotations

import asyncio
import logging
from typing import Callable

from sample_datasource.contracts.health import CheckHealthRequest, CheckHealthResult
from sample_datasource.contracts.plugin import PluginContext
from sample_datasource.contracts.query import QueryDataRequest, QueryDataResponse
from sample_datasource.runtime.datasource import SampleDatasource
from sample_datasource.runtime.instances import InstanceManager
from sample_datasource.utils.logger import get_logger, log_info
from streaming.contracts.stream import (
    PublishStreamRequest,
    PublishStreamResponse,
    RunStreamRequest,
    StreamPacketSender,
    SubscribeStreamRequest,
    SubscribeStreamResponse,
)


class PluginHost:
    """
    Request dispatch for one plugin process.

    Every request is routed to the instance that the registry holds for
    its plugin context. Query, health, subscribe and publish are answered
    synchronously; run_stream holds the caller until the session ends.
    """

    def __init__(
        self,
        factory: Callable[[PluginContext], SampleDatasource] = SampleDatasource.from_context,
        *,
        logger: logging.Logger | None = None,
    ):
        self.instances: InstanceManager[SampleDatasource] = InstanceManager(factory)
        self._logger = logger or get_logger(f"sample_datasource.runtime.{self.__class__.__name__}")

    async def query_data(self, req: QueryDataRequest) -> QueryDataResponse:
        return self.instances.get(req.plugin_context).query_data(req)

    async def check_health(self, req: CheckHealthRequest) -> CheckHealthResult:
        return self.instances.get(req.plugin_context).check_health(req)

    async def subscribe_stream(self, req: SubscribeStreamRequest) -> SubscribeStreamResponse:
        return self.instances.get(req.plugin_context).subscribe_stream(req)

    async def publish_stream(self, req: PublishStreamRequest) -> PublishStreamResponse:
        return self.instances.get(req.plugin_context).publish_stream(req)

    async def run_stream(
        self,
        req: RunStreamRequest,
        sender: StreamPacketSender,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        instance = self.instances.get(req.plugin_context)
        await instance.run_stream(req, sender, cancel=cancel)

    def dispose(self) -> None:
        log_info(self._logger, "host.dispose", instances=len(self.instances))
        self.instances.dispose_all()
