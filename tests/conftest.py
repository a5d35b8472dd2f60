#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
from typing import Iterator

from pytest import fixture

from mdmclient.metrics import MetricIdentifier
from mdmclient.state import State, init_state
from tests.utils import METRIC


@fixture(autouse=True)
def state() -> Iterator[State]:
    # every test starts without a trace id.
    yield init_state()


@fixture
def metric_identifier() -> MetricIdentifier:
    return METRIC
