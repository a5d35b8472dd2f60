#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from mdmclient.query.request import FilteredTimeSeriesQueryRequest


class MetricsClientException(Exception):
    def __init__(self, message: str, trace_id: str = None, status_code: int = None):
        super().__init__(message)
        self.message = message
        self.trace_id = trace_id
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class MetricsSerializationError(MetricsClientException):
    pass


class UnexpectedEndOfStreamError(MetricsSerializationError):
    def __init__(self, position: int, wanted: int, got: int):
        super().__init__(f"Unexpected end of stream at position {position}: wanted {wanted} bytes, got {got}")
        self.position = position


class FilteredQueryFailedError(MetricsClientException):
    """
    The server completed the call but reported that the whole query failed.
    Carries the server's error code and message, and the echoed request if the server was asked to return it.
    """

    def __init__(
        self,
        error_code: int,
        error_message: Optional[str],
        query_request: Optional["FilteredTimeSeriesQueryRequest"] = None,
        trace_id: str = None,
        status_code: int = None,
    ):
        super().__init__(
            f"Error occurred processing the request. Error code: {error_code}. ErrorMessage: {error_message}",
            trace_id,
            status_code,
        )
        self.error_code = error_code
        self.error_message = error_message
        self.query_request = query_request


class APIError(MetricsClientException):
    def __init__(self, message: str, full_data: dict = None, trace_id: str = None, status_code: int = None):
        super().__init__(message, trace_id, status_code)
        self.full_data = full_data
