from __future__ import annotations

from datetime import datetime

import numpy as np
import pandas as pd

from sample_datasource.data.frame import Frame

RESPONSE_FRAME_NAME = "response"
SIMPLE_FRAME_NAME = "an example result"

# fixed magnitudes of the synthetic "values" column
QUERY_VALUES = (10, 20)
SIMPLE_VALUES = (1, 2)


def _utc_index(*instants: datetime) -> pd.DatetimeIndex:
    return pd.to_datetime(list(instants), utc=True)


def build_response_frame(start: datetime, end: datetime) -> Frame:
    """Two-row frame: time=[start, end], values=[10, 20]."""
    return Frame.from_columns(
        RESPONSE_FRAME_NAME,
        {
            "time": pd.Series(_utc_index(start, end)),
            "values": np.array(QUERY_VALUES, dtype=np.int64),
        },
    )


def build_simple_frame() -> Frame:
    """Single unnamed int64 column."""
    return Frame.from_columns(SIMPLE_FRAME_NAME, {"": np.array(SIMPLE_VALUES, dtype=np.int64)})


def build_stream_frame() -> Frame:
    """
    One-row frame reused across ticks of a stream session.

    Starts zeroed; the session overwrites row 0 on every tick.
    """
    return Frame.from_columns(
        RESPONSE_FRAME_NAME,
        {
            "time": pd.Series(pd.to_datetime([0], unit="ms", utc=True)).astype("datetime64[ns, UTC]"),
            "values": np.zeros(1, dtype=np.int64),
        },
    )
