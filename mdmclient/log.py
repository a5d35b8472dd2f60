#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import logging
import logging.handlers
import os
import re
import sys
import time
from logging import LogRecord
from typing import Any, Mapping, Optional

from glogger.extra_adapter import ExtraAdapter

from mdmclient.state import get_state

TRACE_ID_KEY = "trace_id"
LOGGER_NAME_RE = re.compile(r"mdmclient(?:\..+)?")


def get_logger_adapter(logger_name: str) -> logging.LoggerAdapter:
    # Validate the name starts with mdmclient (the root logger name), so logging parent logger propagation will work.
    assert LOGGER_NAME_RE.match(logger_name) is not None, "logger name must start with 'mdmclient'"
    return MdmExtraAdapter(logging.getLogger(logger_name))


class MdmExtraAdapter(ExtraAdapter):
    def get_extra(self, **kwargs: Mapping[str, Any]) -> Mapping[str, Any]:
        extra = super().get_extra(**kwargs)
        # here we add fields which change during the lifetime of the client (a new trace id per query).
        assert TRACE_ID_KEY not in extra
        trace_id = get_state().trace_id
        if trace_id is None:
            return extra
        return {**extra, TRACE_ID_KEY: trace_id}


class _ExtraFormatter(logging.Formatter):
    FILTERED_EXTRA_KEYS = [TRACE_ID_KEY]  # don't print those fields in the short format

    def __init__(self, fmt: str = None, datefmt: str = None, show_trace_id: bool = False) -> None:
        super().__init__(fmt, datefmt)
        self._filtered_keys = [] if show_trace_id else self.FILTERED_EXTRA_KEYS

    def format(self, record: LogRecord) -> str:
        formatted = super().format(record)

        formatted_extra = ", ".join(
            f"{k}={v}" for k, v in record.__dict__.get("extra", {}).items() if k not in self._filtered_keys
        )
        if formatted_extra:
            formatted = f"{formatted} ({formatted_extra})"

        return formatted


class _UTCFormatter(logging.Formatter):
    # Patch formatTime to be GMT (UTC) for all formatters,
    # see https://docs.python.org/3/library/logging.html?highlight=formattime#logging.Formatter.formatTime
    converter = time.gmtime


class MdmFormatter(_ExtraFormatter, _UTCFormatter):
    pass


def initial_root_logger_setup(
    stream_level: int,
    log_file_path: Optional[str],
    rotate_max_bytes: int,
    rotate_backup_count: int,
) -> logging.LoggerAdapter:
    logger_adapter = get_logger_adapter("mdmclient")
    logger_adapter.setLevel(logging.DEBUG)

    # stdout is kept for query results.
    stream_handler = logging.StreamHandler(stream=sys.stderr)
    stream_handler.setLevel(stream_level)
    if stream_level < logging.INFO:
        stream_handler.setFormatter(
            MdmFormatter("[%(asctime)s] %(levelname)s: %(name)s: %(message)s", show_trace_id=True)
        )
    else:
        stream_handler.setFormatter(MdmFormatter("[%(asctime)s] %(message)s", "%H:%M:%S"))
    logger_adapter.logger.addHandler(stream_handler)

    if log_file_path is not None:
        os.makedirs(os.path.dirname(os.path.abspath(log_file_path)), exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file_path,
            maxBytes=rotate_max_bytes,
            backupCount=rotate_backup_count,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            MdmFormatter("[%(asctime)s] %(levelname)s: %(name)s: %(message)s", show_trace_id=True)
        )
        logger_adapter.logger.addHandler(file_handler)

    return logger_adapter
