from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping

from sample_datasource.contracts.plugin import PluginContext, _parse_instant
from sample_datasource.data.frame import Frame


@dataclass(frozen=True)
class TimeRange:
    from_: datetime
    to: datetime

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "TimeRange":
        return cls(from_=_parse_instant(raw["from"]), to=_parse_instant(raw["to"]))


@dataclass(frozen=True)
class DataQuery:
    """
    One query of a batch.

    `json` holds the raw, editor-defined parameters; each query handler
    decides how to parse it. `ref_id` is unique within a batch.
    """

    ref_id: str
    json: bytes | str | Mapping[str, Any] | None
    time_range: TimeRange
    query_type: str = ""
    interval_ms: int = 0
    max_data_points: int = 0

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "DataQuery":
        return cls(
            ref_id=str(raw["refId"]),
            json=raw.get("json"),
            time_range=TimeRange.from_dict(raw["timeRange"]),
            query_type=str(raw.get("queryType", "")),
            interval_ms=int(raw.get("intervalMs", 0)),
            max_data_points=int(raw.get("maxDataPoints", 0)),
        )


@dataclass
class DataResponse:
    frames: List[Frame] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"frames": [f.to_dict() for f in self.frames]}
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class QueryDataRequest:
    plugin_context: PluginContext
    queries: List[DataQuery]


@dataclass
class QueryDataResponse:
    """Responses keyed by the ref_id of the query that produced them."""

    responses: Dict[str, DataResponse] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"results": {ref_id: r.to_dict() for ref_id, r in self.responses.items()}}
