#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import datetime
import re

# Times on the wire are counted from 0001-01-01T00:00:00 UTC (the .NET DateTime epoch).
DOTNET_EPOCH = datetime.datetime(1, 1, 1, tzinfo=datetime.timezone.utc)
ONE_MINUTE = datetime.timedelta(minutes=1)
FRACTION_RE = re.compile(r"\.(\d+)")


def get_iso8601_format_time(time: datetime.datetime) -> str:
    return time.replace(microsecond=0).isoformat()


def to_utc(time: datetime.datetime) -> datetime.datetime:
    """
    Naive datetimes are taken to be in UTC already.
    """
    if time.tzinfo is None:
        return time.replace(tzinfo=datetime.timezone.utc)
    return time.astimezone(datetime.timezone.utc)


def datetime_from_minutes(minutes: int) -> datetime.datetime:
    return DOTNET_EPOCH + datetime.timedelta(minutes=minutes)


def minutes_from_datetime(time: datetime.datetime) -> int:
    return (to_utc(time) - DOTNET_EPOCH) // ONE_MINUTE


def format_dotnet_datetime(time: datetime.datetime) -> str:
    # The server parses "o" round-trip formatted timestamps.
    return to_utc(time).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_dotnet_datetime(value: str) -> datetime.datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    # .NET emits 7 fractional digits, fromisoformat accepts at most 6.
    match = FRACTION_RE.search(value)
    if match is not None:
        value = f"{value[: match.start()]}.{match.group(1)[:6].ljust(6, '0')}{value[match.end() :]}"
    return to_utc(datetime.datetime.fromisoformat(value))
