from __future__ import annotations

import logging

from sample_datasource.contracts.query import DataResponse, QueryDataRequest, QueryDataResponse
from sample_datasource.exceptions.core import QueryError
from sample_datasource.query.handlers import QueryHandler
from sample_datasource.utils.config import BatchErrorPolicy
from sample_datasource.utils.logger import get_logger, log_query, log_warn
from sample_datasource.utils.timer import timed_block


class QueryOrchestrator:
    """
    Fan-out over a batch of independent queries.

    Responsibilities:
      - Run the handler once per query, in request order.
      - Key results by ref_id.
      - Apply the batch error policy to QueryError:
          ISOLATE -> error recorded on that query's response, siblings continue
          ABORT   -> the error propagates and no partial response is returned

    Anything other than QueryError is not a query problem and propagates
    under both policies.
    """

    def __init__(
        self,
        handler: QueryHandler,
        *,
        policy: BatchErrorPolicy = BatchErrorPolicy.ISOLATE,
        logger: logging.Logger | None = None,
    ):
        self._handler = handler
        self._policy = policy
        self._logger = logger or get_logger(f"sample_datasource.query.{self.__class__.__name__}")

    @property
    def policy(self) -> BatchErrorPolicy:
        return self._policy

    def query_data(self, req: QueryDataRequest) -> QueryDataResponse:
        log_query(
            self._logger,
            "query.batch_start",
            query_count=len(req.queries),
            handler=type(self._handler).__name__,
            policy=self._policy,
        )
        response = QueryDataResponse()
        with timed_block("query.batch", query_count=len(req.queries)):
            for q in req.queries:
                try:
                    res = self._handler(req.plugin_context, q)
                except QueryError as exc:
                    if exc.ref_id is None:
                        exc.ref_id = q.ref_id
                    log_warn(
                        self._logger,
                        "query.error",
                        ref_id=q.ref_id,
                        err=str(exc),
                        policy=self._policy,
                    )
                    if self._policy is BatchErrorPolicy.ABORT:
                        raise
                    res = DataResponse(error=str(exc))
                response.responses[q.ref_id] = res
        return response
