from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from sample_datasource.contracts.plugin import PluginContext


class HealthStatus(Enum):
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class CheckHealthRequest:
    plugin_context: PluginContext


@dataclass(frozen=True)
class CheckHealthResult:
    status: HealthStatus
    message: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"status": self.status.value, "message": self.message}


class HealthProbe(Protocol):
    """
    Pluggable health check.

    A probe answers OK or ERROR for one request; it may raise, in which
    case the reporter turns the failure into an ERROR result.
    """

    def __call__(self, request: CheckHealthRequest) -> CheckHealthResult:
        ...
