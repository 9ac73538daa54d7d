from __future__ import annotations

import logging
import random

from sample_datasource.contracts.health import (
    CheckHealthRequest,
    CheckHealthResult,
    HealthProbe,
    HealthStatus,
)
from sample_datasource.utils.logger import get_logger, log_exception, log_health

DEFAULT_OK_MESSAGE = "Data source is working"
DEFAULT_ERROR_MESSAGE = "health check failed"


class RandomHealthProbe:
    """Coin flip: even draw -> ERROR. Illustrates the contract only."""

    def __init__(
        self,
        rng: random.Random | None = None,
        *,
        ok_message: str = DEFAULT_OK_MESSAGE,
        error_message: str = "randomized error",
    ):
        self._rng = rng or random.Random()
        self._ok_message = ok_message
        self._error_message = error_message

    def __call__(self, request: CheckHealthRequest) -> CheckHealthResult:
        if self._rng.getrandbits(31) % 2 == 0:
            return CheckHealthResult(status=HealthStatus.ERROR, message=self._error_message)
        return CheckHealthResult(status=HealthStatus.OK, message=self._ok_message)


class StaticHealthProbe:
    def __init__(self, status: HealthStatus = HealthStatus.OK, message: str = DEFAULT_OK_MESSAGE):
        self._result = CheckHealthResult(status=status, message=message)

    def __call__(self, request: CheckHealthRequest) -> CheckHealthResult:
        return self._result


class HealthReporter:
    """
    Runs the injected probe and normalizes its answer.

    Guarantees:
      - status is one of HealthStatus
      - an ERROR result always carries a non-empty message
      - a probe that raises is reported as ERROR, not propagated
    """

    def __init__(self, probe: HealthProbe, *, logger: logging.Logger | None = None):
        self._probe = probe
        self._logger = logger or get_logger(f"sample_datasource.health.{self.__class__.__name__}")

    def check(self, request: CheckHealthRequest) -> CheckHealthResult:
        try:
            result = self._probe(request)
        except Exception as exc:
            log_exception(self._logger, "health.probe_error", probe=type(self._probe).__name__)
            result = CheckHealthResult(status=HealthStatus.ERROR, message=str(exc) or type(exc).__name__)

        if not isinstance(result.status, HealthStatus):
            result = CheckHealthResult(
                status=HealthStatus.ERROR,
                message=f"probe returned invalid status: {result.status!r}",
            )
        elif result.status is HealthStatus.ERROR and not result.message:
            result = CheckHealthResult(status=HealthStatus.ERROR, message=DEFAULT_ERROR_MESSAGE)

        log_health(
            self._logger,
            "health.checked",
            status=result.status,
            message=result.message,
            probe=type(self._probe).__name__,
        )
        return result
