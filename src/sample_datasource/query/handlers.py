from __future__ import annotations

from typing import Any, Mapping, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sample_datasource.contracts.plugin import PluginContext
from sample_datasource.contracts.query import DataQuery, DataResponse
from sample_datasource.data.builder import build_response_frame, build_simple_frame
from sample_datasource.data.frame import FrameMeta
from sample_datasource.exceptions.core import QueryError
from streaming.contracts.channel import datasource_channel

M = TypeVar("M", bound=BaseModel)


class QueryHandler(Protocol):
    """
    Turns one query into one response.

    Raises QueryError for malformed / invalid input; the orchestrator
    decides whether that fails the query or the whole batch.
    """

    def __call__(self, ctx: PluginContext, query: DataQuery) -> DataResponse:
        ...


QUERY_HANDLER_REGISTRY: dict[str, type] = {}


def register_query_handler(name: str):
    """Decorator: @register_query_handler("sample")"""
    def decorator(cls):
        QUERY_HANDLER_REGISTRY[name] = cls
        return cls
    return decorator


def build_query_handler(name: str, **kwargs) -> QueryHandler:
    if name not in QUERY_HANDLER_REGISTRY:
        raise ValueError(f"Query handler '{name}' not found in registry.")
    return QUERY_HANDLER_REGISTRY[name](**kwargs)


def parse_query_model(model: type[M], query: DataQuery) -> M:
    raw: bytes | str | Mapping[str, Any] | None = query.json
    try:
        if raw is None:
            return model.model_validate({})
        if isinstance(raw, (bytes, str)):
            return model.model_validate_json(raw)
        if not isinstance(raw, Mapping):
            raise QueryError(
                f"query json must be an object, got {type(raw).__name__}", ref_id=query.ref_id
            )
        return model.model_validate(dict(raw))
    except ValidationError as exc:
        err = exc.errors()[0] if exc.errors() else {}
        msg = str(err.get("msg", exc))
        raise QueryError(msg, ref_id=query.ref_id) from exc


# ---------------------------------------------------------------------
# Query models
# ---------------------------------------------------------------------

class SampleQueryModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    query_text: str = Field("", alias="queryText")
    constant: float = 6.5
    # JSON booleans only; "yes" or 1 is an invalid query
    with_streaming: bool = Field(False, alias="withStreaming", strict=True)


class FormatQueryModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    format: str = Field("", validate_default=True)

    @field_validator("format")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("format cannot be empty")
        return v


# ---------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------

@register_query_handler("sample")
class SampleQueryHandler:
    """
    Fixed two-row frame over the query time range.

    With `withStreaming` the frame is tagged with the datasource's live
    channel so the client can subscribe for updates.
    """

    def __call__(self, ctx: PluginContext, query: DataQuery) -> DataResponse:
        qm = parse_query_model(SampleQueryModel, query)
        frame = build_response_frame(query.time_range.from_, query.time_range.to)
        if qm.with_streaming:
            ds = ctx.datasource_instance_settings
            if ds is None:
                raise QueryError("streaming requires a datasource context", ref_id=query.ref_id)
            frame.with_meta(FrameMeta(channel=str(datasource_channel(ds.id))))
        return DataResponse(frames=[frame])


@register_query_handler("format")
class FormatQueryHandler:
    def __call__(self, ctx: PluginContext, query: DataQuery) -> DataResponse:
        parse_query_model(FormatQueryModel, query)
        frame = build_response_frame(query.time_range.from_, query.time_range.to)
        return DataResponse(frames=[frame])


@register_query_handler("simple")
class SimpleQueryHandler:
    # parameters are ignored
    def __call__(self, ctx: PluginContext, query: DataQuery) -> DataResponse:
        return DataResponse(frames=[build_simple_frame()])
