#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import datetime
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from mdmclient.exceptions import FilteredQueryFailedError
from mdmclient.mdm_types import DimensionList
from mdmclient.metrics import MetricIdentifier, SamplingType
from mdmclient.query.request import FilteredTimeSeriesQueryRequest
from mdmclient.serialization.reader import ByteStreamReader
from mdmclient.serialization.writer import ByteStreamWriter

# Error codes reported by the server in a complete failure response. Any other value is passed through as is.
ERROR_CODE_SUCCESS = 0

QUALITY_INFO_VERSION = 0


@dataclass(frozen=True, eq=False)
class FilteredTimeSeries:
    metric_identifier: MetricIdentifier
    dimension_list: Tuple[Tuple[str, str], ...]
    evaluated_result: float
    time_series_values: Tuple[Tuple[SamplingType, Tuple[float, ...]], ...]

    @classmethod
    def create(
        cls,
        metric_identifier: MetricIdentifier,
        dimension_list: DimensionList,
        evaluated_result: float,
        time_series_values: Sequence[Tuple[SamplingType, Sequence[float]]],
    ) -> "FilteredTimeSeries":
        return cls(
            metric_identifier,
            tuple(dimension_list),
            evaluated_result,
            tuple((sampling_type, tuple(values)) for sampling_type, values in time_series_values),
        )

    def get_time_series_values(self, sampling_type: SamplingType) -> List[float]:
        for candidate, values in self.time_series_values:
            if candidate == sampling_type:
                return list(values)

        raise KeyError(f"Sampling type {sampling_type} not found in the query result.")

    @property
    def dimensions(self) -> Dict[str, str]:
        return dict(self.dimension_list)

    def __eq__(self, other: object) -> bool:
        # NaN != NaN, while two series with no evaluated result are the same series.
        if not isinstance(other, FilteredTimeSeries):
            return NotImplemented
        return (
            self.metric_identifier == other.metric_identifier
            and self.dimension_list == other.dimension_list
            and _same_double(self.evaluated_result, other.evaluated_result)
            and _same_series_values(self.time_series_values, other.time_series_values)
        )

    def __hash__(self) -> int:
        return hash(
            (
                self.metric_identifier,
                self.dimension_list,
                _double_key(self.evaluated_result),
                tuple(
                    (sampling_type, tuple(_double_key(v) for v in values))
                    for sampling_type, values in self.time_series_values
                ),
            )
        )

    def __str__(self) -> str:
        lines = [
            f"EvaluatedResult: {self.evaluated_result}",
            "Dimensions:" + "".join(f"{name}: {value};" for name, value in self.dimension_list),
        ]
        for sampling_type, values in self.time_series_values:
            lines.append(f"[{sampling_type}, {', '.join(str(v) for v in values)}]")
        return "\n".join(lines)


def _same_double(a: float, b: float) -> bool:
    return a == b or (math.isnan(a) and math.isnan(b))


def _double_key(value: float) -> Optional[float]:
    # NaN objects hash by identity, all of them stand for "no value".
    return None if math.isnan(value) else value


SeriesValues = Sequence[Tuple[SamplingType, Sequence[float]]]


def _same_series_values(a: SeriesValues, b: SeriesValues) -> bool:
    if len(a) != len(b):
        return False
    for (a_type, a_values), (b_type, b_values) in zip(a, b):
        if a_type != b_type or len(a_values) != len(b_values):
            return False
        if not all(_same_double(x, y) for x, y in zip(a_values, b_values)):
            return False
    return True


@dataclass
class DiagnosticInfo:
    trace_id: Optional[str] = None
    handling_server_id: Optional[str] = None
    error_message: Optional[str] = None

    def __str__(self) -> str:
        return (
            f"TraceId:{self.trace_id}, HandlingServerId:{self.handling_server_id}, "
            f"ErrorMessage:{self.error_message}."
        )


@dataclass
class QueryMessage:
    """
    A free form diagnostic message the server appends after the series (format version 2 and above).
    """

    topic: int
    level: int
    source: int
    content: str


class QueryResultQualityInfo:
    def __init__(self) -> None:
        self.total_estimated_time_series = 0
        self._total_dropped_time_series = 0
        self._dropped_time_series: Dict[str, int] = {}

    @property
    def total_dropped_time_series(self) -> int:
        return self._total_dropped_time_series

    @property
    def total_evaluated_time_series(self) -> int:
        return self.total_estimated_time_series - self._total_dropped_time_series

    def get_dropped_time_series_reasons(self) -> List[str]:
        return list(self._dropped_time_series)

    def get_dropped_time_series_by_reason(self, reason: str) -> int:
        return self._dropped_time_series[reason]

    def register_dropped_time_series(self, reason: str, count: int) -> None:
        if count > 0:
            self._total_dropped_time_series += count
            self._dropped_time_series[reason] = self._dropped_time_series.get(reason, 0) + count

    def register_estimated_time_series(self, count: int) -> None:
        self.total_estimated_time_series += count

    def aggregate(self, source: "QueryResultQualityInfo") -> None:
        for reason, count in source._dropped_time_series.items():
            self.register_dropped_time_series(reason, count)

    @classmethod
    def deserialize(cls, reader: ByteStreamReader) -> "QueryResultQualityInfo":
        quality_info = cls()
        reader.read_byte()  # version
        quality_info.total_estimated_time_series = reader.read_int32()
        # The reasons table is only present when something was dropped.
        total_dropped = reader.read_int32()
        if total_dropped > 0:
            for _ in range(reader.read_int32()):
                reason = reader.read_string()
                quality_info.register_dropped_time_series(reason, reader.read_int32())
        quality_info._total_dropped_time_series = total_dropped
        return quality_info

    def serialize(self, writer: ByteStreamWriter) -> None:
        writer.write_byte(QUALITY_INFO_VERSION)
        writer.write_int32(self.total_estimated_time_series)
        writer.write_int32(self._total_dropped_time_series)
        if self._total_dropped_time_series > 0:
            writer.write_int32(len(self._dropped_time_series))
            for reason, count in self._dropped_time_series.items():
                writer.write_string(reason)
                writer.write_int32(count)

    def __str__(self) -> str:
        result = (
            f"Total Estimated TimeSeries:{self.total_estimated_time_series}, "
            f"Total Dropped TimeSeries:{self._total_dropped_time_series}."
        )
        if self._total_dropped_time_series > 0:
            result += "".join(f"{reason}:{count}" for reason, count in self._dropped_time_series.items())
        return result


@dataclass
class FilteredTimeSeriesQueryResponse:
    start_time_utc: Optional[datetime.datetime] = None
    end_time_utc: Optional[datetime.datetime] = None
    time_resolution_in_minutes: int = 0
    filtered_time_series_list: List[FilteredTimeSeries] = field(default_factory=list)
    error_code: int = ERROR_CODE_SUCCESS
    diagnostic_info: DiagnosticInfo = field(default_factory=DiagnosticInfo)
    query_request: Optional[FilteredTimeSeriesQueryRequest] = None
    # Set when the server sent a complete failure, whatever error code it carries.
    complete_failure: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.complete_failure and self.error_code == ERROR_CODE_SUCCESS

    def get_error(self, status_code: int = None) -> FilteredQueryFailedError:
        return FilteredQueryFailedError(
            self.error_code,
            self.diagnostic_info.error_message,
            self.query_request,
            trace_id=self.diagnostic_info.trace_id,
            status_code=status_code,
        )

    def raise_for_error(self, status_code: int = None) -> None:
        """
        Raises FilteredQueryFailedError if the server reported that the query failed.
        """
        if not self.succeeded:
            raise self.get_error(status_code)
