#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import json
import tempfile
from typing import Any, Dict, Iterator, List, Sequence

import requests
from requests import Session

from mdmclient import __version__
from mdmclient.exceptions import APIError, MetricsClientException
from mdmclient.log import get_logger_adapter
from mdmclient.query.request import FilteredTimeSeriesQueryRequest
from mdmclient.query.response import FilteredTimeSeries, FilteredTimeSeriesQueryResponse
from mdmclient.serialization import filtered_response
from mdmclient.state import get_state

logger = get_logger_adapter(__name__)

DEFAULT_CLIENT_ID = f"mdmclient-python/{__version__}"
DEFAULT_REQUEST_TIMEOUT = 100
# The server takes the cost limit as a signed 32 bit value.
UNLIMITED_COST = 2 ** 31 - 1
TRACE_ID_HEADER = "TraceGuid"
CLIENT_ID_HEADER = "ClientId"
HANDLING_SERVER_ID_HEADER = "__HandlingServerId__"
# Bodies above this size are spooled to disk while streaming.
SPOOL_MAX_MEMORY_SIZE = 16 * 1024 * 1024
DOWNLOAD_CHUNK_SIZE = 64 * 1024


class BaseAPIClient:
    def __init__(
        self,
        curlify_requests: bool,
        verify: bool = True,
    ):
        self._curlify = curlify_requests
        self._verify = verify
        self._init_session()

    def _init_session(self) -> None:
        self._session: Session = requests.Session()
        self._session.verify = self._verify

    def _request_url(
        self,
        method: str,
        url: str,
        data: Any,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        params: Dict[str, str] = None,
        headers: Dict[str, str] = None,
        stream: bool = False,
    ) -> requests.Response:
        """
        Sends the request and returns the response once its status is known to be successful.
        With stream=True the body is not read yet, and the caller is responsible for closing the response.
        """
        trace_id = get_state().trace_id
        opts: dict = {"headers": dict(headers or {}), "timeout": timeout, "stream": stream, "params": params or {}}

        if data is not None:
            opts["headers"]["Content-type"] = "application/json"
            try:
                opts["data"] = json.dumps(data, ensure_ascii=False).encode("utf-8")
            except TypeError:
                # This should only happen while in development, and is used to get a more indicative error.
                bad_json = str(data)
                logger.exception("Given data is not a valid JSON!", bad_json=bad_json)
                raise

        try:
            resp = self._session.request(method, url, **opts)
        except requests.RequestException as e:
            raise MetricsClientException(f"Failed to get a response from the server: {e}", trace_id) from e

        if self._curlify:
            import curlify  # type: ignore  # import here as it's not always required.

            logger.debug("API request", curl_command=curlify.to_curl(resp.request), status_code=resp.status_code)

        if resp.ok:
            return resp

        # The error body is small, read it and release the connection.
        try:
            if 400 <= resp.status_code < 500:
                try:
                    response_data = resp.json()
                except ValueError:
                    raise APIError(resp.text, trace_id=trace_id, status_code=resp.status_code)
                message = (
                    response_data.get("message", "(no message in response)")
                    if isinstance(response_data, dict)
                    else str(response_data)
                )
                raise APIError(message, response_data, trace_id=trace_id, status_code=resp.status_code)

            raise MetricsClientException(
                f"Request failed with HTTP Status Code: {resp.status_code}. TraceId: {trace_id}. Response: {resp.text}",
                trace_id,
                resp.status_code,
            )
        finally:
            resp.close()


class MetricReader(BaseAPIClient):
    """
    Client of the filtered time series query endpoint.

    Each query gets a fresh trace id, sent to the server in the TraceGuid header and attached to the log records and
    to the errors of that query.
    """

    QUERY_PATH = "query/v1/multiple"

    def __init__(
        self,
        endpoint: str,
        *,
        client_id: str = DEFAULT_CLIENT_ID,
        timeout: int = DEFAULT_REQUEST_TIMEOUT,
        max_cost: int = UNLIMITED_COST,
        return_request_object_on_failure: bool = False,
        curlify_requests: bool = False,
        verify: bool = True,
    ):
        self._endpoint = endpoint.rstrip("/")
        self._client_id = client_id
        self._timeout = timeout
        self._max_cost = max_cost
        self._return_request_object_on_failure = return_request_object_on_failure
        super().__init__(curlify_requests, verify)

    def _init_session(self) -> None:
        super()._init_session()
        self._session.headers.update({CLIENT_ID_HEADER: self._client_id})

    def get_query_url(self) -> str:
        return "{}/{}/serializationVersion/{}/maxCost/{}".format(
            self._endpoint, self.QUERY_PATH, filtered_response.CURRENT_VERSION, self._max_cost
        )

    def _get_query_params(self) -> Dict[str, str]:
        return {
            "timeoutInSeconds": str(self._timeout),
            "returnRequestObjectOnFailure": str(self._return_request_object_on_failure).lower(),
        }

    def _post_query(self, query_requests: Sequence[FilteredTimeSeriesQueryRequest], stream: bool) -> requests.Response:
        if not query_requests:
            raise ValueError("At least one query request must be given")

        trace_id = get_state().init_new_trace()
        logger.info("Sending filtered time series query", request_count=len(query_requests))
        return self._request_url(
            "POST",
            self.get_query_url(),
            [query_request.to_json() for query_request in query_requests],
            # the server gives up on its side after timeoutInSeconds, give it some slack to report it.
            timeout=self._timeout + 5,
            params=self._get_query_params(),
            headers={TRACE_ID_HEADER: trace_id},
            stream=stream,
        )

    def get_raw_responses(self, query_requests: Sequence[FilteredTimeSeriesQueryRequest]) -> bytes:
        """
        Returns the undecoded body, as saved by "mdmclient query --save" and read back by "mdmclient decode".
        """
        resp = self._post_query(query_requests, stream=False)
        logger.debug("Received query response", status_code=resp.status_code, length=len(resp.content))
        return resp.content

    def get_filtered_time_series_responses(
        self, query_requests: Sequence[FilteredTimeSeriesQueryRequest]
    ) -> List[FilteredTimeSeriesQueryResponse]:
        resp = self._post_query(query_requests, stream=False)
        trace_id = get_state().trace_id
        handling_server_id = resp.headers.get(HANDLING_SERVER_ID_HEADER)
        logger.debug(
            "Received query response",
            status_code=resp.status_code,
            length=len(resp.content),
            handling_server_id=handling_server_id,
        )

        try:
            responses = filtered_response.deserialize_responses(resp.content)
        except MetricsClientException as e:
            e.trace_id = trace_id
            e.status_code = resp.status_code
            raise

        for response in responses:
            response.diagnostic_info.trace_id = trace_id
            response.diagnostic_info.handling_server_id = handling_server_id
        return responses

    def get_filtered_time_series(
        self, query_request: FilteredTimeSeriesQueryRequest
    ) -> FilteredTimeSeriesQueryResponse:
        """
        Runs a single query, with all the resulting series in memory.
        Raises FilteredQueryFailedError if the server reports that the query failed.
        """
        responses = self.get_filtered_time_series_responses([query_request])
        if not responses:
            trace_id = get_state().trace_id
            raise MetricsClientException(f"Response is null or empty. TraceId: {trace_id}", trace_id)

        response = responses[0]
        response.raise_for_error()
        logger.info("Query completed", series_count=len(response.filtered_time_series_list))
        return response

    def iter_filtered_time_series(self, query_request: FilteredTimeSeriesQueryRequest) -> Iterator[FilteredTimeSeries]:
        """
        Runs a single query and yields its series one by one.

        The body is spooled first (decoding needs to seek to the interning tables), in memory up to
        SPOOL_MAX_MEMORY_SIZE and on disk past it. The HTTP response is closed once the body is spooled,
        or when the iteration fails.
        """
        resp = self._post_query([query_request], stream=True)
        trace_id = get_state().trace_id
        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY_SIZE) as body:
            try:
                for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    body.write(chunk)
            except requests.RequestException as e:
                raise MetricsClientException(
                    f"Failed to read the response body: {e}", trace_id, resp.status_code
                ) from e
            finally:
                resp.close()

            logger.debug("Spooled query response", length=body.tell())
            body.seek(0)

            count = 0
            try:
                for series in filtered_response.iter_filtered_time_series(body):
                    count += 1
                    yield series
            except MetricsClientException as e:
                e.trace_id = trace_id
                e.status_code = resp.status_code
                raise
            logger.info("Query completed", series_count=count)
