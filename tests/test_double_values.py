#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import math
from typing import List

import pytest

from mdmclient.exceptions import MetricsSerializationError, UnexpectedEndOfStreamError
from mdmclient.serialization import double_values
from mdmclient.serialization.reader import ByteStreamReader
from mdmclient.serialization.writer import ByteStreamWriter

# "11" 00010 001010 1111111111 (1.0), "11" 00001 001011 11111111111 (2.0 ^ 1.0), padded.
ONE_TWO_ENCODED = bytes([0x01, 0x02, 0xC4, 0x57, 0xFF, 0x84, 0xBF, 0xFE])


def _serialize(values: List[float]) -> bytes:
    writer = ByteStreamWriter()
    double_values.serialize(writer, values)
    return writer.getvalue()


def test_deserialize_known_encoding() -> None:
    reader = ByteStreamReader(ONE_TWO_ENCODED)
    assert double_values.deserialize(reader) == [1.0, 2.0]
    assert reader.position == len(ONE_TWO_ENCODED)


def test_serialize_known_encoding() -> None:
    assert _serialize([1.0, 2.0]) == ONE_TWO_ENCODED


def test_empty_array() -> None:
    assert _serialize([]) == b"\x01\x00"
    assert double_values.deserialize(ByteStreamReader(b"\x01\x00")) == []


def test_repeated_values_take_a_bit_each() -> None:
    # first value: 2 + 5 + 6 + 10 bits, then a single "0" bit per repetition.
    encoded = _serialize([1.0] * 9)
    assert len(encoded) == 2 + 4
    assert double_values.deserialize(ByteStreamReader(encoded)) == [1.0] * 9


@pytest.mark.parametrize(
    "values",
    [
        pytest.param([3.0, 2.0, 3.0, 2.0], id="reused-window"),
        pytest.param([0.1, 0.2, 0.30000000000000004, -7.5, 1e300, 5e-324], id="mixed"),
        pytest.param([math.inf, -math.inf, 0.0, 42.0], id="infinities"),
        pytest.param([-0.0, 0.0, -0.0], id="signed-zeros"),
    ],
)
def test_values_survive_encoding(values: List[float]) -> None:
    decoded = double_values.deserialize(ByteStreamReader(_serialize(values)))
    assert decoded == values
    assert [math.copysign(1, v) for v in decoded] == [math.copysign(1, v) for v in values]


def test_nan_is_kept_and_nullable_maps_it_to_none() -> None:
    encoded = _serialize([1.0, math.nan, 3.0])
    decoded = double_values.deserialize(ByteStreamReader(encoded))
    assert decoded[0] == 1.0 and math.isnan(decoded[1]) and decoded[2] == 3.0
    assert double_values.deserialize_to_nullable(ByteStreamReader(encoded)) == [1.0, None, 3.0]


def test_expected_count_mismatch() -> None:
    with pytest.raises(MetricsSerializationError, match="expected 3, but was 2"):
        double_values.deserialize(ByteStreamReader(ONE_TWO_ENCODED), expected_count=3)


def test_truncated_bit_stream() -> None:
    with pytest.raises(UnexpectedEndOfStreamError):
        double_values.deserialize(ByteStreamReader(ONE_TWO_ENCODED[:4]))


def test_reusing_a_window_before_one_was_set() -> None:
    # version, count 1, then "10": reuse the previous window, of which there is none.
    with pytest.raises(MetricsSerializationError, match="before any was set"):
        double_values.deserialize(ByteStreamReader(b"\x01\x01\x80"))


def test_invalid_window() -> None:
    # "11", 31 leading zeros, 52 meaningful bits: more than 64 bits.
    with pytest.raises(MetricsSerializationError, match="Invalid double value block"):
        double_values.deserialize(ByteStreamReader(b"\x01\x01" + bytes([0b11111111, 0b10100000])))
