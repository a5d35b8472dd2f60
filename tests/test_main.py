#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import datetime
from pathlib import Path
from typing import List
from unittest.mock import patch

import pytest

from mdmclient.main import build_query_request, parse_cmd_args, run_decode, run_query
from mdmclient.metrics import AVERAGE, SUM, MetricIdentifier
from mdmclient.query.request import DimensionFilter, OrderBy
from mdmclient.serialization.filtered_response_writer import serialize_responses
from tests.utils import START_TIME, make_response, make_series

QUERY_ARGS = ["query", "--endpoint", "https://metrics.example.com", "--account", "acct", "--namespace", "ns"]


def _query_args(*extra: str) -> List[str]:
    return QUERY_ARGS + ["--metric", "metric", *extra]


def test_build_query_request() -> None:
    args = parse_cmd_args(
        _query_args(
            "--sampling-type",
            "Average",
            "--sampling-type",
            "Sum",
            "--dimension",
            "!role=canary",
            "--dimension",
            "region",
            "--start",
            "2024-01-02T03:04:00Z",
            "--end",
            "2024-01-02T05:04:00Z",
            "--resolution",
            "5",
            "--top",
            "10",
        )
    )

    request = build_query_request(args)

    assert args.func is run_query
    assert request.metric_identifier == MetricIdentifier("acct", "ns", "metric")
    assert request.sampling_types == [AVERAGE, SUM]
    assert request.dimension_filters == [
        DimensionFilter.create_exclude_filter("role", "canary"),
        DimensionFilter.create_include_filter("region"),
    ]
    assert request.start_time_utc == START_TIME
    assert request.end_time_utc == START_TIME + datetime.timedelta(hours=2)
    assert request.series_resolution_in_minutes == 5
    assert request.number_of_results_to_return == 10
    assert request.order_by == OrderBy.DESCENDING


def test_lookback() -> None:
    args = parse_cmd_args(_query_args("--end", "2024-01-02T05:04:00Z", "--lookback", "2h"))

    request = build_query_request(args)

    assert request.start_time_utc == START_TIME
    assert request.sampling_types == [SUM]


@pytest.mark.parametrize(
    "extra",
    [
        pytest.param(["--resolution", "0"], id="zero-resolution"),
        pytest.param(["--lookback", "soon"], id="bad-lookback"),
        pytest.param(["--stream", "--save", "x.bin"], id="stream-and-save"),
    ],
)
def test_invalid_arguments(extra: List[str]) -> None:
    with pytest.raises(SystemExit):
        parse_cmd_args(_query_args(*extra))


def test_query_save(tmp_path: Path) -> None:
    path = tmp_path / "response.bin"
    args = parse_cmd_args(_query_args("--save", str(path)))

    with patch("mdmclient.main.MetricReader") as reader_class:
        reader_class.return_value.get_raw_responses.return_value = b"\x00"
        args.func(args)

    assert path.read_bytes() == b"\x00"
    assert reader_class.call_args[0] == ("https://metrics.example.com",)


@pytest.mark.parametrize("stream", [False, True])
def test_decode(tmp_path: Path, capsys: pytest.CaptureFixture, stream: bool) -> None:
    path = tmp_path / "response.bin"
    path.write_bytes(serialize_responses([[make_response([make_series([("dim1", "v1")], [(SUM, [1.0, 2.0])])])]]))
    args = parse_cmd_args(["decode", "--file-path", str(path)] + (["--stream"] if stream else []))

    assert args.func is run_decode
    args.func(args)

    out = capsys.readouterr().out
    assert "acct/ns/metric {'dim1': 'v1'}" in out
    assert "[Sum, 1.0, 2.0]" in out
