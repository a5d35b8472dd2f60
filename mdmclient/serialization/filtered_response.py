#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
"""
Deserialization of the binary body returned by the filtered time series query endpoint.

A single response is laid out as:

    Version:u8
    if Version == 0xFF: ErrorCode:i16 Message:str HasRequest:bool [JsonRequest:str]
    else:
        HasQualityInfo:bool [QualityInfo]
        StartMinutes:varu64 DurationMinutes:varu32 ResolutionMinutes:varu32 SeriesCount:varu32
        StringTableOffset:u64                            -> VarU32(count) str*count
        if Version >= 3: MetadataTableOffset:u64         -> VarU32(count) SeriesMetadata*count
        if SeriesCount > 0 and Version < 3: SeriesMetadata
        Record*SeriesCount
        <string table> <metadata table>
        if Version >= 2: MessageCount:u8 (Topic:u8 Level:u8 Source:u8 Content:str)*MessageCount

Table offsets are relative to the position of the offset field itself. The tables are physically stored after
the records, so they are read by jumping ahead and coming back, and skipped over once the records are consumed.
All string references in the metadata and in the records are base-128 indices into the string table.

The endpoint wraps responses in an envelope: VarU32(BlockCount), then per block a version byte (added by the
relay host, ignored), an i32 count and that many responses.
"""
import json
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Iterator, List, Optional, Tuple, TypeVar, Union

from mdmclient.exceptions import MetricsSerializationError
from mdmclient.log import get_logger_adapter
from mdmclient.metrics import MetricIdentifier, SamplingType
from mdmclient.query.request import FilteredTimeSeriesQueryRequest
from mdmclient.query.response import (
    DiagnosticInfo,
    FilteredTimeSeries,
    FilteredTimeSeriesQueryResponse,
    QueryMessage,
    QueryResultQualityInfo,
)
from mdmclient.serialization import double_values
from mdmclient.serialization.reader import ByteStreamReader
from mdmclient.utils import ONE_MINUTE, datetime_from_minutes

logger = get_logger_adapter(__name__)

VERSION_TO_INDICATE_COMPLETE_FAILURE = 0xFF
CURRENT_VERSION = 3
# The highest version this module knows how to parse.
NEXT_VERSION = 3
FIRST_VERSION_WITH_QUERY_MESSAGES = 2
FIRST_VERSION_WITH_METADATA_TABLE = 3
# Table offsets are written in a fixed 8 bytes slot.
TABLE_OFFSET_SIZE = 8

ResponseSource = Union[bytes, bytearray, BinaryIO, ByteStreamReader]
T = TypeVar("T")


@dataclass(frozen=True)
class SeriesMetadata:
    metric_identifier: MetricIdentifier
    dimension_names: Tuple[str, ...]


@dataclass
class ResponsePreamble:
    """
    Everything read before the first record of a response, needed to decode the records and to finish the response.
    """

    version: int
    series_count: int
    string_table: List[str] = field(default_factory=list)
    string_table_length_in_bytes: int = 0
    metadata_table: List[SeriesMetadata] = field(default_factory=list)
    metadata_table_length_in_bytes: int = 0
    # The single shape of all series in responses older than version 3.
    series_metadata: Optional[SeriesMetadata] = None


def _as_reader(source: ResponseSource) -> ByteStreamReader:
    if isinstance(source, ByteStreamReader):
        return source
    return ByteStreamReader(source)


def _lookup(table: List[T], index: int, table_name: str) -> T:
    if index >= len(table):
        raise MetricsSerializationError(f"Index {index} is out of range of the {table_name} ({len(table)} entries)")
    return table[index]


def _read_string_by_index(reader: ByteStreamReader, string_table: List[str]) -> str:
    return _lookup(string_table, reader.read_var_uint32(), "string table")


def _read_series_metadata(reader: ByteStreamReader, string_table: List[str]) -> SeriesMetadata:
    # Order on the wire is account, namespace, name.
    monitoring_account = _read_string_by_index(reader, string_table)
    metric_namespace = _read_string_by_index(reader, string_table)
    metric_name = _read_string_by_index(reader, string_table)
    try:
        metric_identifier = MetricIdentifier(monitoring_account, metric_namespace, metric_name)
    except ValueError as e:
        raise MetricsSerializationError(f"Invalid metric identifier in response: {e}") from e

    dimension_names = tuple(_read_string_by_index(reader, string_table) for _ in range(reader.read_byte()))
    return SeriesMetadata(metric_identifier, dimension_names)


def _read_table(reader: ByteStreamReader, read_entry: Callable[[], T]) -> Tuple[List[T], int]:
    """
    Reads a table stored elsewhere in the stream, and returns it with its length in bytes.
    The reader is left right after the offset field.
    """
    offset_field_position = reader.position
    reader.position = offset_field_position + reader.read_uint64()

    table_start_position = reader.position
    table = [read_entry() for _ in range(reader.read_var_uint32())]
    table_length_in_bytes = reader.position - table_start_position

    reader.position = offset_field_position + TABLE_OFFSET_SIZE
    return table, table_length_in_bytes


def _read_failure(reader: ByteStreamReader, response: FilteredTimeSeriesQueryResponse) -> None:
    response.error_code = reader.read_int16()
    # The trace id and the handling server are filled in by callers.
    response.diagnostic_info.error_message = reader.read_string()
    if reader.read_boolean():
        request_json = reader.read_string()
        try:
            data = json.loads(request_json)
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            response.query_request = FilteredTimeSeriesQueryRequest.from_json(data)
        except (ValueError, KeyError, TypeError) as e:
            raise MetricsSerializationError(f"Invalid request object in a failure response: {e}") from e


def read_preamble(
    reader: ByteStreamReader, response: FilteredTimeSeriesQueryResponse
) -> Optional[ResponsePreamble]:
    """
    Reads the header and the interning tables of one response, filling the response's header fields.

    Returns None if the server reported a complete failure, in which case the response holds the error code and
    message and nothing else is to be read for this response.
    """
    version = reader.read_byte()
    if version == 0:
        raise MetricsSerializationError(
            "The server didn't respond with the right version of serialization - "
            "the initial version is 1 but the server responds with version 0."
        )

    response.diagnostic_info = DiagnosticInfo()
    if version == VERSION_TO_INDICATE_COMPLETE_FAILURE:
        response.complete_failure = True
        _read_failure(reader, response)
        logger.debug("Read a complete failure response", error_code=response.error_code)
        return None

    if version > NEXT_VERSION:
        raise MetricsSerializationError(
            "The server didn't respond with the right version of serialization. "
            f"CurrentVersion : {CURRENT_VERSION}, NextVersion : {NEXT_VERSION}, Responded: {version}."
        )

    if reader.read_boolean():
        quality_info = QueryResultQualityInfo.deserialize(reader)
        logger.debug("Discarding query result quality info", quality_info=str(quality_info))

    start_minutes = reader.read_var_uint64()
    duration_minutes = reader.read_var_uint32()
    try:
        response.start_time_utc = datetime_from_minutes(start_minutes)
        response.end_time_utc = response.start_time_utc + duration_minutes * ONE_MINUTE
    except OverflowError as e:
        raise MetricsSerializationError(
            f"Time range out of range: start {start_minutes} minutes, duration {duration_minutes} minutes"
        ) from e
    response.time_resolution_in_minutes = reader.read_var_uint32()

    preamble = ResponsePreamble(version=version, series_count=reader.read_var_uint32())
    preamble.string_table, preamble.string_table_length_in_bytes = _read_table(reader, reader.read_string)

    if version >= FIRST_VERSION_WITH_METADATA_TABLE:
        preamble.metadata_table, preamble.metadata_table_length_in_bytes = _read_table(
            reader, lambda: _read_series_metadata(reader, preamble.string_table)
        )

    if preamble.series_count > 0:
        if version < FIRST_VERSION_WITH_METADATA_TABLE:
            preamble.series_metadata = _read_series_metadata(reader, preamble.string_table)
            response.query_request = FilteredTimeSeriesQueryRequest(preamble.series_metadata.metric_identifier)
        else:
            first = _lookup(preamble.metadata_table, 0, "metadata table")
            response.query_request = FilteredTimeSeriesQueryRequest(first.metric_identifier)

    logger.debug(
        "Read response preamble",
        version=version,
        series_count=preamble.series_count,
        string_table_size=len(preamble.string_table),
        metadata_table_size=len(preamble.metadata_table),
    )
    return preamble


def read_time_series(reader: ByteStreamReader, preamble: ResponsePreamble) -> FilteredTimeSeries:
    string_table = preamble.string_table
    if preamble.version >= FIRST_VERSION_WITH_METADATA_TABLE:
        series_metadata = _lookup(preamble.metadata_table, reader.read_var_uint32(), "metadata table")
    else:
        assert preamble.series_metadata is not None, "series metadata is read whenever there are series"
        series_metadata = preamble.series_metadata

    dimension_list = [
        (dimension_name, _read_string_by_index(reader, string_table))
        for dimension_name in series_metadata.dimension_names
    ]

    # Only the first evaluated property is exposed, the names are not.
    evaluated_values = []
    for _ in range(reader.read_byte()):
        _read_string_by_index(reader, string_table)
        evaluated_values.append(reader.read_double())

    time_series_values = []
    for _ in range(reader.read_byte()):
        sampling_type = SamplingType.get(_read_string_by_index(reader, string_table))
        time_series_values.append((sampling_type, double_values.deserialize(reader)))

    evaluated_result = evaluated_values[0] if evaluated_values else float("nan")
    return FilteredTimeSeries.create(
        series_metadata.metric_identifier, dimension_list, evaluated_result, time_series_values
    )


def read_query_messages(reader: ByteStreamReader) -> List[QueryMessage]:
    return [
        QueryMessage(
            topic=reader.read_byte(), level=reader.read_byte(), source=reader.read_byte(), content=reader.read_string()
        )
        for _ in range(reader.read_byte())
    ]


def finish_response(reader: ByteStreamReader, preamble: ResponsePreamble) -> None:
    """
    Moves the reader past everything that follows the records of a response.
    """
    # The tables were already read through their offsets, skip them.
    reader.skip(preamble.string_table_length_in_bytes + preamble.metadata_table_length_in_bytes)

    if preamble.version >= FIRST_VERSION_WITH_QUERY_MESSAGES:
        # TODO: expose the query messages on the response once the server documents topics and levels.
        for message in read_query_messages(reader):
            logger.debug(
                "Discarding query message",
                message_topic=message.topic,
                message_level=message.level,
                message_source=message.source,
                message_content=message.content,
            )


def deserialize_response(source: ResponseSource) -> FilteredTimeSeriesQueryResponse:
    """
    Deserializes a single response, with all its series in memory.
    """
    reader = _as_reader(source)
    response = FilteredTimeSeriesQueryResponse()
    preamble = read_preamble(reader, response)
    if preamble is None:
        return response

    response.filtered_time_series_list = [read_time_series(reader, preamble) for _ in range(preamble.series_count)]
    finish_response(reader, preamble)
    return response


def _iter_envelope(reader: ByteStreamReader) -> Iterator[None]:
    """
    Positions the reader at each response of the envelope in turn.
    """
    block_count = reader.read_var_uint32()
    for block in range(block_count):
        reader.read_byte()  # version of the relay host, not in use.
        response_count = reader.read_int32()
        if response_count < 0:
            raise MetricsSerializationError(f"Negative response count {response_count} in block {block}")
        for _ in range(response_count):
            yield


def deserialize_responses(source: ResponseSource) -> List[FilteredTimeSeriesQueryResponse]:
    reader = _as_reader(source)
    return [deserialize_response(reader) for _ in _iter_envelope(reader)]


def iter_filtered_time_series(source: ResponseSource) -> Iterator[FilteredTimeSeries]:
    """
    Yields the series of all the responses in the envelope one by one, without keeping them in memory.

    The iteration is single pass. A response reporting a complete failure raises FilteredQueryFailedError
    once the series of the preceding responses have been yielded.
    """
    reader = _as_reader(source)
    for _ in _iter_envelope(reader):
        response = FilteredTimeSeriesQueryResponse()
        preamble = read_preamble(reader, response)
        if preamble is None:
            raise response.get_error()

        for _ in range(preamble.series_count):
            yield read_time_series(reader, preamble)
        finish_response(reader, preamble)
