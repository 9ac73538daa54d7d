from __future__ import annotations

import json
import math
from datetime import datetime, timezone

import pandas as pd
import pytest

from sample_datasource.data.builder import build_response_frame, build_simple_frame, build_stream_frame
from sample_datasource.data.frame import Frame, FrameMeta

START = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
END = datetime(2024, 3, 1, 13, 0, tzinfo=timezone.utc)


def test_response_frame_spans_time_range():
    frame = build_response_frame(START, END)
    assert frame.name == "response"
    assert frame.field_names == ["time", "values"]
    assert len(frame) == 2
    assert frame.fields["time"].iloc[0] == pd.Timestamp(START)
    assert frame.fields["time"].iloc[1] == pd.Timestamp(END)
    assert frame.fields["values"].tolist() == [10, 20]


def test_to_dict_uses_epoch_ms_and_field_types():
    out = build_response_frame(START, END).to_dict()
    assert out["schema"]["name"] == "response"
    assert out["schema"]["fields"] == [
        {"name": "time", "type": "time"},
        {"name": "values", "type": "number"},
    ]
    assert "meta" not in out["schema"]
    assert out["data"]["values"] == [
        [int(START.timestamp() * 1000), int(END.timestamp() * 1000)],
        [10, 20],
    ]


def test_meta_channel_is_serialized():
    frame = build_response_frame(START, END).with_meta(FrameMeta(channel="ds/1/stream"))
    out = json.loads(frame.to_json())
    assert out["schema"]["meta"] == {"channel": "ds/1/stream"}


def test_simple_frame_has_single_unnamed_column():
    out = build_simple_frame().to_dict()
    assert out["schema"]["name"] == "an example result"
    assert out["schema"]["fields"] == [{"name": "", "type": "number"}]
    assert out["data"]["values"] == [[1, 2]]


def test_stream_frame_row_can_be_overwritten():
    frame = build_stream_frame()
    now = pd.Timestamp("2024-03-01T12:00:00Z")
    frame.set_value("time", 0, now)
    frame.set_value("values", 0, 20)
    out = frame.to_dict()
    assert out["data"]["values"] == [[int(now.value // 1_000_000)], [20]]


def test_columns_must_have_equal_length():
    with pytest.raises(ValueError):
        Frame.from_columns("bad", {"a": [1, 2], "b": [1]})


def test_non_finite_values_fail_serialization():
    frame = Frame.from_columns("nan", {"v": [math.nan]})
    with pytest.raises(ValueError):
        frame.to_json()
