from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sample_datasource.exceptions.core import ConfigError

DEFAULT_STREAM_INTERVAL_MS = 200
DEFAULT_MAX_SEND_FAILURES = 10


class SendErrorMode(str, Enum):
    CONTINUE = "continue"
    ABORT = "abort"


class BatchErrorPolicy(str, Enum):
    """How a query batch reacts to one query failing."""

    ISOLATE = "isolate"
    ABORT = "abort"


class SendFailurePolicy(BaseModel):
    """
    Delivery failure handling for a running stream.

    `mode=abort` stops on the first failed send. `mode=continue` keeps
    ticking, but gives up once `max_consecutive` sends in a row have failed.
    `max_consecutive=None` never gives up.
    """

    model_config = ConfigDict(frozen=True)

    mode: SendErrorMode = SendErrorMode.CONTINUE
    max_consecutive: int | None = Field(DEFAULT_MAX_SEND_FAILURES, ge=1)


class DatasourceSettings(BaseModel):
    """Flat per-instance settings object sent by the host as `jsonData`."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    # set by the config editor; the backend carries it but never reads it
    path: str = ""
    stream_interval_ms: int = Field(DEFAULT_STREAM_INTERVAL_MS, alias="streamIntervalMs", gt=0)
    on_send_error: SendErrorMode = Field(SendErrorMode.CONTINUE, alias="onSendError")
    max_send_failures: int | None = Field(DEFAULT_MAX_SEND_FAILURES, alias="maxSendFailures", ge=1)
    batch_error_policy: BatchErrorPolicy = Field(BatchErrorPolicy.ISOLATE, alias="batchErrorPolicy")
    query_handler: str = Field("sample", alias="queryHandler", min_length=1)

    @property
    def send_policy(self) -> SendFailurePolicy:
        return SendFailurePolicy(mode=self.on_send_error, max_consecutive=self.max_send_failures)

    @classmethod
    def parse(cls, raw: bytes | str | Mapping[str, Any] | None) -> "DatasourceSettings":
        """Parse raw `jsonData`; empty input yields defaults."""
        try:
            if raw is None or (isinstance(raw, (bytes, str)) and not raw.strip()):
                return cls()
            if isinstance(raw, (bytes, str)):
                return cls.model_validate_json(raw)
            if not isinstance(raw, Mapping):
                raise ConfigError(f"invalid datasource settings: expected an object, got {type(raw).__name__}")
            return cls.model_validate(dict(raw))
        except ValidationError as exc:
            raise ConfigError(f"invalid datasource settings: {_first_error(exc)}") from exc


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    err = errors[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))
