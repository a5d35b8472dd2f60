#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
"""
Encoder for the filtered time series query response format, see filtered_response.py for the layout.
Used to build bodies for fakes and tests, and by tooling that replays saved queries.
"""
import json
import math
from typing import Dict, List, Sequence

from mdmclient.metrics import MetricIdentifier
from mdmclient.query.request import FilteredTimeSeriesQueryRequest
from mdmclient.query.response import (
    FilteredTimeSeries,
    FilteredTimeSeriesQueryResponse,
    QueryMessage,
    QueryResultQualityInfo,
)
from mdmclient.serialization import double_values
from mdmclient.serialization.filtered_response import (
    CURRENT_VERSION,
    FIRST_VERSION_WITH_METADATA_TABLE,
    FIRST_VERSION_WITH_QUERY_MESSAGES,
    NEXT_VERSION,
    VERSION_TO_INDICATE_COMPLETE_FAILURE,
    SeriesMetadata,
)
from mdmclient.serialization.writer import ByteStreamWriter
from mdmclient.utils import ONE_MINUTE, minutes_from_datetime

# Name of the single evaluated property written per series, the reader does not expose it.
EVALUATED_PROPERTY_NAME = "EvaluatedResult"
ENVELOPE_BLOCK_VERSION = 1


class _Tables:
    def __init__(self) -> None:
        self.strings: Dict[str, int] = {}
        self.metadata: Dict[SeriesMetadata, int] = {}

    def string_index(self, value: str) -> int:
        return self.strings.setdefault(value, len(self.strings))

    def metadata_index(self, series_metadata: SeriesMetadata) -> int:
        if series_metadata not in self.metadata:
            # intern its strings now, so the string table is complete once all records are written.
            self._intern_metadata(series_metadata)
            self.metadata[series_metadata] = len(self.metadata)
        return self.metadata[series_metadata]

    def _intern_metadata(self, series_metadata: SeriesMetadata) -> None:
        identifier = series_metadata.metric_identifier
        for value in (identifier.monitoring_account, identifier.metric_namespace, identifier.metric_name):
            self.string_index(value)
        for dimension_name in series_metadata.dimension_names:
            self.string_index(dimension_name)


def _series_metadata(series: FilteredTimeSeries) -> SeriesMetadata:
    return SeriesMetadata(series.metric_identifier, tuple(name for name, _ in series.dimension_list))


def _write_series_metadata(writer: ByteStreamWriter, tables: _Tables, series_metadata: SeriesMetadata) -> None:
    identifier: MetricIdentifier = series_metadata.metric_identifier
    writer.write_var_uint32(tables.string_index(identifier.monitoring_account))
    writer.write_var_uint32(tables.string_index(identifier.metric_namespace))
    writer.write_var_uint32(tables.string_index(identifier.metric_name))
    writer.write_byte(len(series_metadata.dimension_names))
    for dimension_name in series_metadata.dimension_names:
        writer.write_var_uint32(tables.string_index(dimension_name))


def _write_time_series(writer: ByteStreamWriter, tables: _Tables, series: FilteredTimeSeries, version: int) -> None:
    if version >= FIRST_VERSION_WITH_METADATA_TABLE:
        writer.write_var_uint32(tables.metadata_index(_series_metadata(series)))

    for _, dimension_value in series.dimension_list:
        writer.write_var_uint32(tables.string_index(dimension_value))

    if math.isnan(series.evaluated_result):
        writer.write_byte(0)
    else:
        writer.write_byte(1)
        writer.write_var_uint32(tables.string_index(EVALUATED_PROPERTY_NAME))
        writer.write_double(series.evaluated_result)

    writer.write_byte(len(series.time_series_values))
    for sampling_type, values in series.time_series_values:
        writer.write_var_uint32(tables.string_index(sampling_type.name))
        double_values.serialize(writer, values)


def _patch_offset(writer: ByteStreamWriter, offset_field_position: int, table_position: int) -> None:
    end = writer.position
    writer.position = offset_field_position
    writer.write_uint64(table_position - offset_field_position)
    writer.position = end


def serialize_failure(
    writer: ByteStreamWriter,
    error_code: int,
    error_message: str,
    query_request: FilteredTimeSeriesQueryRequest = None,
) -> None:
    writer.write_byte(VERSION_TO_INDICATE_COMPLETE_FAILURE)
    writer.write_int16(error_code)
    writer.write_string(error_message)
    writer.write_boolean(query_request is not None)
    if query_request is not None:
        writer.write_string(json.dumps(query_request.to_json()))


def serialize_response(
    writer: ByteStreamWriter,
    response: FilteredTimeSeriesQueryResponse,
    version: int = CURRENT_VERSION,
    quality_info: QueryResultQualityInfo = None,
    messages: Sequence[QueryMessage] = (),
) -> None:
    """
    Writes a single response. A response that did not succeed is written as a complete failure.
    """
    if not response.succeeded:
        serialize_failure(
            writer, response.error_code, response.diagnostic_info.error_message or "", response.query_request
        )
        return

    if not 1 <= version <= NEXT_VERSION:
        raise ValueError(f"Cannot write version {version} of the response format")
    assert response.start_time_utc is not None and response.end_time_utc is not None, "time range is required"

    series_list = response.filtered_time_series_list
    if version < FIRST_VERSION_WITH_METADATA_TABLE and len({_series_metadata(s) for s in series_list}) > 1:
        raise ValueError(f"Version {version} can only hold series of a single metric and dimension names")
    if version < FIRST_VERSION_WITH_QUERY_MESSAGES and messages:
        raise ValueError(f"Version {version} cannot hold query messages")

    writer.write_byte(version)
    writer.write_boolean(quality_info is not None)
    if quality_info is not None:
        quality_info.serialize(writer)
    writer.write_var_uint64(minutes_from_datetime(response.start_time_utc))
    writer.write_var_uint32((response.end_time_utc - response.start_time_utc) // ONE_MINUTE)
    writer.write_var_uint32(response.time_resolution_in_minutes)
    writer.write_var_uint32(len(series_list))

    tables = _Tables()
    string_table_offset_position = writer.position
    writer.write_uint64(0)
    metadata_table_offset_position = None
    if version >= FIRST_VERSION_WITH_METADATA_TABLE:
        metadata_table_offset_position = writer.position
        writer.write_uint64(0)

    if series_list and version < FIRST_VERSION_WITH_METADATA_TABLE:
        _write_series_metadata(writer, tables, _series_metadata(series_list[0]))

    for series in series_list:
        _write_time_series(writer, tables, series, version)

    _patch_offset(writer, string_table_offset_position, writer.position)
    strings: List[str] = list(tables.strings)
    writer.write_var_uint32(len(strings))
    for value in strings:
        writer.write_string(value)

    if metadata_table_offset_position is not None:
        _patch_offset(writer, metadata_table_offset_position, writer.position)
        writer.write_var_uint32(len(tables.metadata))
        for series_metadata in tables.metadata:
            _write_series_metadata(writer, tables, series_metadata)

    if version >= FIRST_VERSION_WITH_QUERY_MESSAGES:
        writer.write_byte(len(messages))
        for message in messages:
            writer.write_byte(message.topic)
            writer.write_byte(message.level)
            writer.write_byte(message.source)
            writer.write_string(message.content)


def serialize_responses(
    blocks: Sequence[Sequence[FilteredTimeSeriesQueryResponse]], version: int = CURRENT_VERSION
) -> bytes:
    """
    Builds a whole endpoint body: the envelope with each block of responses.
    """
    writer = ByteStreamWriter()
    writer.write_var_uint32(len(blocks))
    for block in blocks:
        writer.write_byte(ENVELOPE_BLOCK_VERSION)
        writer.write_int32(len(block))
        for response in block:
            serialize_response(writer, response, version)
    return writer.getvalue()
