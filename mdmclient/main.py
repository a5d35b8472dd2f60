#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import datetime
import logging
import sys
from pathlib import Path
from typing import Iterable, List

import configargparse
import humanfriendly

from mdmclient import __version__
from mdmclient.client import DEFAULT_CLIENT_ID, DEFAULT_REQUEST_TIMEOUT, UNLIMITED_COST, MetricReader
from mdmclient.exceptions import APIError, FilteredQueryFailedError, MetricsClientException
from mdmclient.log import get_logger_adapter, initial_root_logger_setup
from mdmclient.mdm_types import dimension_filter, positive_integer, timespan
from mdmclient.metrics import MetricIdentifier, SamplingType
from mdmclient.query.request import (
    FilteredTimeSeriesQueryRequest,
    OrderBy,
    PropertyAggregationType,
    PropertyDefinition,
    SelectionClause,
)
from mdmclient.query.response import FilteredTimeSeries, FilteredTimeSeriesQueryResponse
from mdmclient.serialization import filtered_response
from mdmclient.state import init_state
from mdmclient.utils import get_iso8601_format_time, parse_dotnet_datetime

logger = get_logger_adapter("mdmclient")

QUERY_SUBCOMMAND = "query"
DECODE_SUBCOMMAND = "decode"
DEFAULT_LOG_FILE = None
DEFAULT_LOG_MAX_SIZE = 1024 * 1024 * 5
DEFAULT_LOG_BACKUP_COUNT = 1
DEFAULT_LOOKBACK = datetime.timedelta(hours=1)


def print_series(series: FilteredTimeSeries) -> None:
    print(f"{series.metric_identifier} {series.dimensions}")
    print(series)
    print()


def print_response(response: FilteredTimeSeriesQueryResponse) -> None:
    if not response.succeeded:
        print(f"Query failed with error code {response.error_code}: {response.diagnostic_info.error_message}")
        return

    assert response.start_time_utc is not None and response.end_time_utc is not None
    print(
        f"{get_iso8601_format_time(response.start_time_utc)} - {get_iso8601_format_time(response.end_time_utc)}, "
        f"resolution {response.time_resolution_in_minutes}m, {len(response.filtered_time_series_list)} series"
    )
    for series in response.filtered_time_series_list:
        print_series(series)


def _print_all_series(all_series: Iterable[FilteredTimeSeries]) -> int:
    count = 0
    for series in all_series:
        print_series(series)
        count += 1
    return count


def build_query_request(args: configargparse.Namespace) -> FilteredTimeSeriesQueryRequest:
    end_time = args.end_time if args.end_time is not None else datetime.datetime.now(datetime.timezone.utc)
    start_time = args.start_time if args.start_time is not None else end_time - args.lookback
    sampling_types: List[SamplingType] = args.sampling_types or [SamplingType.get("Sum")]

    selection_clause = None
    if args.top is not None:
        selection_clause = SelectionClause(
            PropertyDefinition(PropertyAggregationType.AVERAGE, sampling_types[0]), args.top, OrderBy.DESCENDING
        )

    metric_identifier = MetricIdentifier(args.monitoring_account, args.metric_namespace, args.metric_name)
    return FilteredTimeSeriesQueryRequest.create(
        metric_identifier,
        sampling_types,
        args.dimension_filters or [],
        start_time,
        end_time,
        series_resolution_in_minutes=args.resolution,
        selection_clause=selection_clause,
    )


def run_query(args: configargparse.Namespace) -> None:
    reader = MetricReader(
        args.endpoint,
        client_id=args.client_id,
        timeout=args.timeout,
        max_cost=args.max_cost,
        return_request_object_on_failure=args.return_request_on_failure,
        curlify_requests=args.curlify_requests,
        verify=args.verify,
    )
    query_request = build_query_request(args)

    if args.save_path is not None:
        body = reader.get_raw_responses([query_request])
        Path(args.save_path).write_bytes(body)
        logger.info(f"Saved response body ({humanfriendly.format_size(len(body))}) to {args.save_path}")
    elif args.stream:
        count = _print_all_series(reader.iter_filtered_time_series(query_request))
        logger.info(f"Received {count} series")
    else:
        print_response(reader.get_filtered_time_series(query_request))


def run_decode(args: configargparse.Namespace) -> None:
    path = Path(args.file_path)
    logger.info(f"Decoding {path} ({humanfriendly.format_size(path.stat().st_size)})")
    with path.open("rb") as f:
        if args.stream:
            count = _print_all_series(filtered_response.iter_filtered_time_series(f))
            logger.info(f"Decoded {count} series")
        else:
            for response in filtered_response.deserialize_responses(f):
                print_response(response)


def parse_cmd_args(argv: List[str] = None) -> configargparse.Namespace:
    parser = configargparse.ArgumentParser(
        description="Command line client for the filtered time series query endpoint.",
        auto_env_var_prefix="mdmclient_",
        add_config_file_help=True,
        add_env_var_help=False,
        default_config_files=["/etc/mdmclient/config.ini"],
    )
    parser.add_argument("--config", is_config_file=True, help="Config file path")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("-v", "--verbose", action="store_true", default=False, dest="verbose")

    logging_options = parser.add_argument_group("logging")
    logging_options.add_argument("--log-file", action="store", type=str, dest="log_file", default=DEFAULT_LOG_FILE)
    logging_options.add_argument(
        "--log-rotate-max-size",
        action="store",
        type=positive_integer,
        dest="log_rotate_max_size",
        default=DEFAULT_LOG_MAX_SIZE,
    )
    logging_options.add_argument(
        "--log-rotate-backup-count",
        action="store",
        type=positive_integer,
        dest="log_rotate_backup_count",
        default=DEFAULT_LOG_BACKUP_COUNT,
    )

    subparsers = parser.add_subparsers(dest="subcommand", required=True)

    query = subparsers.add_parser(QUERY_SUBCOMMAND, help="Run a filtered time series query")
    query.set_defaults(func=run_query)
    connectivity = query.add_argument_group("connectivity")
    connectivity.add_argument("--endpoint", required=True, help="Query service endpoint, e.g. https://host:port")
    connectivity.add_argument(
        "--timeout",
        type=positive_integer,
        default=DEFAULT_REQUEST_TIMEOUT,
        help="Query timeout in seconds (default: %(default)s)",
    )
    connectivity.add_argument("--client-id", default=DEFAULT_CLIENT_ID, help="Client id (default: %(default)s)")
    connectivity.add_argument(
        "--max-cost", type=positive_integer, default=UNLIMITED_COST, help="Query cost limit (default: unlimited)"
    )
    connectivity.add_argument(
        "--curlify-requests", help="Log cURL commands for HTTP requests (used for debugging)", action="store_true"
    )
    connectivity.add_argument(
        "--no-verify", help="Do not verify server certificates", action="store_false", dest="verify"
    )

    metric = query.add_argument_group("metric")
    metric.add_argument("--account", dest="monitoring_account", required=True, help="Monitoring account")
    metric.add_argument("--namespace", dest="metric_namespace", required=True, help="Metric namespace")
    metric.add_argument("--metric", dest="metric_name", required=True, help="Metric name")
    metric.add_argument(
        "--sampling-type",
        dest="sampling_types",
        action="append",
        type=SamplingType.get,
        help="Sampling type to return, can be given multiple times (default: Sum)",
    )
    metric.add_argument(
        "--dimension",
        dest="dimension_filters",
        action="append",
        type=dimension_filter,
        help='Dimension filter: "name", "name=v1,v2" or "!name=v1,v2" to exclude values. Can be given multiple times',
    )
    metric.add_argument("--start", dest="start_time", type=parse_dotnet_datetime, help="Start time (ISO-8601, UTC)")
    metric.add_argument("--end", dest="end_time", type=parse_dotnet_datetime, help="End time (ISO-8601, UTC)")
    metric.add_argument(
        "--lookback",
        type=timespan,
        default=DEFAULT_LOOKBACK,
        help="Time range to query when --start is not given, e.g. 90m or 2h (default: 1h)",
    )
    metric.add_argument(
        "--resolution", type=positive_integer, default=1, help="Series resolution in minutes (default: %(default)s)"
    )
    metric.add_argument(
        "--top",
        type=positive_integer,
        default=None,
        help="Return only the top N series by average of the first sampling type (default: all)",
    )
    metric.add_argument(
        "--return-request-on-failure",
        action="store_true",
        default=False,
        help="Ask the server to echo the request back when the query fails",
    )
    output = query.add_mutually_exclusive_group()
    output.add_argument("--stream", action="store_true", help="Print series as they are decoded")
    output.add_argument("--save", dest="save_path", help="Save the raw response body to this path instead of decoding")

    decode = subparsers.add_parser(DECODE_SUBCOMMAND, help="Decode a saved response body")
    decode.set_defaults(func=run_decode)
    decode.add_argument("--file-path", required=True, help="Path of the saved response body")
    decode.add_argument("--stream", action="store_true", help="Print series as they are decoded")

    return parser.parse_args(argv)


def main() -> None:
    args = parse_cmd_args()
    state = init_state()

    global logger
    logger = initial_root_logger_setup(
        logging.DEBUG if args.verbose else logging.INFO,
        args.log_file,
        args.log_rotate_max_size,
        args.log_rotate_backup_count,
    )

    try:
        logger.debug(
            "Running mdmclient", version=__version__, run_id=state.run_id, commandline=" ".join(sys.argv[1:])
        )
        args.func(args)
    except KeyboardInterrupt:
        pass
    except FilteredQueryFailedError as e:
        logger.error(f"Query failed: {e}", error_code=e.error_code)
        sys.exit(1)
    except APIError as e:
        logger.error(f"Server rejected the request: {e}", status_code=e.status_code, full_data=e.full_data)
        sys.exit(1)
    except MetricsClientException as e:
        logger.error(str(e), status_code=e.status_code)
        sys.exit(1)
    except Exception:
        logger.exception("Unexpected error occurred")
        sys.exit(1)


if __name__ == "__main__":
    main()
