#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#

import datetime
from typing import TYPE_CHECKING, List, Tuple

import configargparse
import humanfriendly

if TYPE_CHECKING:
    from mdmclient.query.request import DimensionFilter

DimensionList = List[Tuple[str, str]]


def positive_integer(value_str: str) -> int:
    value = int(value_str)
    if value <= 0:
        raise configargparse.ArgumentTypeError("invalid positive integer value: {!r}".format(value))
    return value


def timespan(value_str: str) -> datetime.timedelta:
    """
    Accepts human friendly durations, such as "90m", "2h" or "1d".
    """
    try:
        seconds = humanfriendly.parse_timespan(value_str)
    except humanfriendly.InvalidTimespan as e:
        raise configargparse.ArgumentTypeError(str(e))
    if seconds <= 0:
        raise configargparse.ArgumentTypeError(f"invalid timespan value: {value_str!r}")
    return datetime.timedelta(seconds=seconds)


def dimension_filter(value_str: str) -> "DimensionFilter":
    """
    Parses "name", "name=v1,v2" (include filter) or "!name=v1,v2" (exclude filter).
    """
    from mdmclient.query.request import DimensionFilter

    exclude = value_str.startswith("!")
    if exclude:
        value_str = value_str[1:]
    name, sep, values = value_str.partition("=")
    dimension_values = [v for v in values.split(",") if v] if sep else []
    try:
        if exclude:
            return DimensionFilter.create_exclude_filter(name, *dimension_values)
        return DimensionFilter.create_include_filter(name, *dimension_values)
    except ValueError as e:
        raise configargparse.ArgumentTypeError(str(e))
