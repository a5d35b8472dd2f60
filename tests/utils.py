#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import datetime
from typing import Iterable, List, Sequence, Tuple

from mdmclient.metrics import MetricIdentifier, SamplingType
from mdmclient.query.response import FilteredTimeSeries, FilteredTimeSeriesQueryResponse
from mdmclient.serialization.filtered_response import CURRENT_VERSION
from mdmclient.serialization.filtered_response_writer import serialize_response
from mdmclient.serialization.writer import ByteStreamWriter
from mdmclient.utils import ONE_MINUTE

START_TIME = datetime.datetime(2024, 1, 2, 3, 4, tzinfo=datetime.timezone.utc)
METRIC = MetricIdentifier("acct", "ns", "metric")

# The response used throughout the tests, spelled out byte by byte:
# one series of acct/ns/metric with dim1=v1, no evaluated property, and Sum = [1.0, 2.0].
SCENARIO_BODY = (
    # version 3, no quality info, start 0, duration 1, resolution 1, 1 series
    bytes([0x03, 0x00, 0x00, 0x01, 0x01, 0x01])
    # string table at 6 + 29 = 35, metadata table at 14 + 49 = 63
    + (29).to_bytes(8, "little")
    + (49).to_bytes(8, "little")
    # record: metadata 0, dim1 value index 4 ("v1"), no properties, 1 sampling type: index 5 ("Sum")
    + bytes([0x00, 0x04, 0x00, 0x01, 0x05])
    # double values [1.0, 2.0]
    + bytes([0x01, 0x02, 0xC4, 0x57, 0xFF, 0x84, 0xBF, 0xFE])
    # string table
    + b"\x06" + b"\x02ns" + b"\x06metric" + b"\x04acct" + b"\x04dim1" + b"\x02v1" + b"\x03Sum"
    # metadata table: 1 entry, acct/ns/metric, 1 dimension: dim1
    + bytes([0x01, 0x02, 0x00, 0x01, 0x01, 0x03])
    # no messages
    + b"\x00"
)
SCENARIO_DIMENSION_VALUE_OFFSET = 23


def make_series(
    dimensions: Sequence[Tuple[str, str]],
    values: Iterable[Tuple[SamplingType, Sequence[float]]],
    evaluated_result: float = float("nan"),
    metric_identifier: MetricIdentifier = METRIC,
) -> FilteredTimeSeries:
    return FilteredTimeSeries.create(metric_identifier, list(dimensions), evaluated_result, list(values))


def make_response(
    series_list: List[FilteredTimeSeries], duration_minutes: int = 60, resolution: int = 1
) -> FilteredTimeSeriesQueryResponse:
    return FilteredTimeSeriesQueryResponse(
        start_time_utc=START_TIME,
        end_time_utc=START_TIME + duration_minutes * ONE_MINUTE,
        time_resolution_in_minutes=resolution,
        filtered_time_series_list=series_list,
    )


def serialize(response: FilteredTimeSeriesQueryResponse, version: int = CURRENT_VERSION, **kwargs) -> bytes:
    writer = ByteStreamWriter()
    serialize_response(writer, response, version, **kwargs)
    return writer.getvalue()
