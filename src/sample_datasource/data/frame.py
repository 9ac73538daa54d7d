"""Tabular results exchanged with the host.

A Frame is a named, ordered set of equal-length columns. Columns live in a
pandas DataFrame so dtypes are explicit (datetime64[ns, UTC], int64, ...).

Wire shape (data-frame JSON):
    {
      "schema": {"name": ..., "fields": [{"name": ..., "type": ...}], "meta": {...}},
      "data":   {"values": [[col0...], [col1...]]}
    }

Time columns are serialized as epoch milliseconds.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class FrameMeta:
    # live channel clients subscribe to for updates of this frame
    channel: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.channel is not None:
            out["channel"] = self.channel
        return out


@dataclass
class Frame:
    name: str
    fields: pd.DataFrame
    meta: FrameMeta | None = None

    @classmethod
    def from_columns(cls, name: str, columns: Mapping[str, Sequence[Any] | pd.Series]) -> "Frame":
        lengths = {len(v) for v in columns.values()}
        if len(lengths) > 1:
            raise ValueError(f"frame {name!r} columns differ in length: {sorted(lengths)}")
        return cls(name=name, fields=pd.DataFrame(dict(columns)))

    @property
    def field_names(self) -> List[str]:
        return [str(c) for c in self.fields.columns]

    def __len__(self) -> int:
        return len(self.fields.index)

    def set_value(self, column: str, row: int, value: Any) -> None:
        self.fields.at[row, column] = value

    def with_meta(self, meta: FrameMeta) -> "Frame":
        self.meta = meta
        return self

    # -------------------------------------------------
    # Serialization
    # -------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {
            "name": self.name,
            "fields": [
                {"name": str(col), "type": _field_type(self.fields[col])}
                for col in self.fields.columns
            ],
        }
        if self.meta is not None:
            meta = self.meta.to_dict()
            if meta:
                schema["meta"] = meta
        return {
            "schema": schema,
            "data": {"values": [_column_values(self.fields[col]) for col in self.fields.columns]},
        }

    def to_json(self) -> bytes:
        # allow_nan=False: NaN/inf are not valid JSON and fail the tick
        return json.dumps(self.to_dict(), allow_nan=False, separators=(",", ":")).encode("utf-8")


def _field_type(s: pd.Series) -> str:
    if pd.api.types.is_datetime64_any_dtype(s):
        return "time"
    if pd.api.types.is_bool_dtype(s):
        return "boolean"
    if pd.api.types.is_numeric_dtype(s):
        return "number"
    return "string"


def _column_values(s: pd.Series) -> List[Any]:
    if pd.api.types.is_datetime64_any_dtype(s):
        return [None if pd.isna(ts) else int(pd.Timestamp(ts).value // 1_000_000) for ts in s]
    out: List[Any] = []
    for v in s.tolist():
        if isinstance(v, np.generic):
            v = v.item()
        out.append(v)
    return out
