#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import datetime
import json
from typing import Iterator, List
from unittest.mock import Mock, patch

import pytest
import requests

from mdmclient.client import CLIENT_ID_HEADER, HANDLING_SERVER_ID_HEADER, TRACE_ID_HEADER, MetricReader
from mdmclient.exceptions import APIError, FilteredQueryFailedError, MetricsClientException
from mdmclient.metrics import SUM, MetricIdentifier
from mdmclient.query.request import FilteredTimeSeriesQueryRequest
from mdmclient.query.response import DiagnosticInfo, FilteredTimeSeries, FilteredTimeSeriesQueryResponse
from mdmclient.serialization.filtered_response_writer import serialize_responses
from mdmclient.state import get_state
from tests.utils import START_TIME, make_response, make_series

ENDPOINT = "https://metrics.example.com/"
SERIES = [make_series([("dim1", f"v{i}")], [(SUM, [float(i), float(i + 1)])]) for i in range(3)]


@pytest.fixture
def session() -> Iterator[Mock]:
    with patch("mdmclient.client.requests.Session") as session_class:
        yield session_class.return_value


@pytest.fixture
def reader(session: Mock) -> MetricReader:
    return MetricReader(ENDPOINT, client_id="tests", timeout=30, return_request_object_on_failure=True)


@pytest.fixture
def query_request(metric_identifier: MetricIdentifier) -> FilteredTimeSeriesQueryRequest:
    return FilteredTimeSeriesQueryRequest.create(
        metric_identifier, [SUM], [], START_TIME, START_TIME + datetime.timedelta(hours=1)
    )


def _http_response(status_code: int = 200, content: bytes = b"", chunks: List[bytes] = None, **kwargs) -> Mock:
    resp = Mock(status_code=status_code, ok=status_code < 400, content=content, headers={}, **kwargs)
    resp.iter_content.return_value = chunks if chunks is not None else [content]
    return resp


def test_query_request_is_sent(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    session.request.return_value = _http_response(content=serialize_responses([[make_response(SERIES)]]))

    reader.get_filtered_time_series(query_request)

    session.headers.update.assert_called_once_with({CLIENT_ID_HEADER: "tests"})
    (method, url), kwargs = session.request.call_args
    assert method == "POST"
    assert url == "https://metrics.example.com/query/v1/multiple/serializationVersion/3/maxCost/2147483647"
    assert kwargs["params"] == {"timeoutInSeconds": "30", "returnRequestObjectOnFailure": "true"}
    assert kwargs["headers"][TRACE_ID_HEADER] == get_state().trace_id
    assert kwargs["headers"]["Content-type"] == "application/json"
    assert json.loads(kwargs["data"]) == [query_request.to_json()]
    assert kwargs["stream"] is False


def test_get_filtered_time_series(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    resp = _http_response(content=serialize_responses([[make_response(SERIES)]]))
    resp.headers = {HANDLING_SERVER_ID_HEADER: "server-7"}
    session.request.return_value = resp

    response = reader.get_filtered_time_series(query_request)

    assert response.filtered_time_series_list == SERIES
    assert response.diagnostic_info.trace_id == get_state().trace_id
    assert response.diagnostic_info.handling_server_id == "server-7"


def test_each_query_gets_a_new_trace_id(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    session.request.side_effect = lambda *args, **kwargs: _http_response(
        content=serialize_responses([[make_response(SERIES)]])
    )

    reader.get_filtered_time_series(query_request)
    first_trace_id = get_state().trace_id
    reader.get_filtered_time_series(query_request)

    assert first_trace_id is not None
    assert get_state().trace_id != first_trace_id


def test_failed_query(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    failed = FilteredTimeSeriesQueryResponse(error_code=5, diagnostic_info=DiagnosticInfo(error_message="throttled"))
    session.request.return_value = _http_response(content=serialize_responses([[failed]]))

    with pytest.raises(FilteredQueryFailedError) as exc_info:
        reader.get_filtered_time_series(query_request)

    assert exc_info.value.error_code == 5
    assert exc_info.value.error_message == "throttled"
    assert exc_info.value.trace_id == get_state().trace_id


def test_failed_query_with_success_code(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    failed = FilteredTimeSeriesQueryResponse(
        complete_failure=True, diagnostic_info=DiagnosticInfo(error_message="internal error")
    )
    session.request.return_value = _http_response(content=serialize_responses([[failed]]))

    with pytest.raises(FilteredQueryFailedError) as exc_info:
        reader.get_filtered_time_series(query_request)

    assert exc_info.value.error_code == 0
    assert exc_info.value.error_message == "internal error"


def test_empty_envelope(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    session.request.return_value = _http_response(content=b"\x00")

    with pytest.raises(MetricsClientException, match="null or empty"):
        reader.get_filtered_time_series(query_request)


def test_malformed_body_carries_trace_id(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    session.request.return_value = _http_response(content=b"\x01\x01\x01\x00\x00\x00\x00")

    with pytest.raises(MetricsClientException) as exc_info:
        reader.get_filtered_time_series(query_request)

    assert exc_info.value.trace_id == get_state().trace_id
    assert exc_info.value.status_code == 200


def test_client_error(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    resp = _http_response(status_code=400, text='{"message": "bad request"}')
    resp.json.return_value = {"message": "bad request"}
    session.request.return_value = resp

    with pytest.raises(APIError) as exc_info:
        reader.get_filtered_time_series(query_request)

    assert exc_info.value.message == "bad request"
    assert exc_info.value.full_data == {"message": "bad request"}
    assert exc_info.value.status_code == 400
    resp.close.assert_called_once()


def test_client_error_without_json(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    resp = _http_response(status_code=403, text="forbidden")
    resp.json.side_effect = ValueError("not json")
    session.request.return_value = resp

    with pytest.raises(APIError, match="forbidden"):
        reader.get_filtered_time_series(query_request)


def test_server_error(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    session.request.return_value = _http_response(status_code=503, text="unavailable")

    with pytest.raises(MetricsClientException) as exc_info:
        reader.get_filtered_time_series(query_request)

    assert not isinstance(exc_info.value, APIError)
    assert exc_info.value.status_code == 503
    assert "unavailable" in str(exc_info.value)


def test_transport_error(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    session.request.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(MetricsClientException, match="connection refused") as exc_info:
        reader.get_filtered_time_series(query_request)

    assert exc_info.value.trace_id == get_state().trace_id
    assert isinstance(exc_info.value.__cause__, requests.ConnectionError)


def test_iter_filtered_time_series(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    body = serialize_responses([[make_response(SERIES[:1])], [make_response(SERIES[1:])]])
    resp = _http_response(chunks=[body[:7], body[7:20], body[20:]])
    session.request.return_value = resp

    result: List[FilteredTimeSeries] = list(reader.iter_filtered_time_series(query_request))

    assert result == SERIES
    assert session.request.call_args[1]["stream"] is True
    resp.close.assert_called_once()


def test_iter_filtered_time_series_failure(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    failed = FilteredTimeSeriesQueryResponse(error_code=9, diagnostic_info=DiagnosticInfo(error_message="denied"))
    resp = _http_response(content=serialize_responses([[failed]]))
    session.request.return_value = resp

    with pytest.raises(FilteredQueryFailedError) as exc_info:
        list(reader.iter_filtered_time_series(query_request))

    assert exc_info.value.error_code == 9
    assert exc_info.value.trace_id == get_state().trace_id
    resp.close.assert_called_once()


def test_iter_filtered_time_series_body_read_error(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    resp = _http_response()
    resp.iter_content.side_effect = requests.exceptions.ChunkedEncodingError("connection reset")
    session.request.return_value = resp

    with pytest.raises(MetricsClientException, match="Failed to read the response body"):
        list(reader.iter_filtered_time_series(query_request))

    resp.close.assert_called_once()


def test_get_raw_responses(
    session: Mock, reader: MetricReader, query_request: FilteredTimeSeriesQueryRequest
) -> None:
    body = serialize_responses([[make_response(SERIES)]])
    session.request.return_value = _http_response(content=body)

    assert reader.get_raw_responses([query_request]) == body
    with pytest.raises(ValueError):
        reader.get_raw_responses([])
