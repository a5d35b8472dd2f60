#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
"""
Compressed arrays of doubles, as found in each sampling type of a filtered time series.

Layout: a reserved version byte, a base-128 count, and then a bit stream (most significant bit first, padded to a
byte boundary) holding each value XOR-ed with the previous one (the first value is XOR-ed with 0.0):

    0                                      - same value as the previous one
    1 0 <meaningful bits>                  - reuse the previous leading/trailing zeros window
    1 1 <5 bits leading zeros> <6 bits meaningful bits count, 0 means 64> <meaningful bits>
"""
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

from mdmclient.exceptions import MetricsSerializationError
from mdmclient.serialization.reader import DOUBLE_FORMAT, UINT64_FORMAT, ByteStreamReader
from mdmclient.serialization.writer import ByteStreamWriter

SERIALIZATION_VERSION = 1
BITS_IN_LONG = 64
NUM_BITS_TO_ENCODE_NUM_LEADING_ZEROS = 5
NUM_BITS_TO_ENCODE_NUM_MEANINGFUL_BITS = 6
MAX_LEADING_ZEROS_LENGTH = (1 << NUM_BITS_TO_ENCODE_NUM_LEADING_ZEROS) - 1


def _double_to_bits(value: float) -> int:
    return UINT64_FORMAT.unpack(DOUBLE_FORMAT.pack(value))[0]


def _bits_to_double(bits: int) -> float:
    return DOUBLE_FORMAT.unpack(UINT64_FORMAT.pack(bits))[0]


@dataclass
class _DoubleValueState:
    bits: int = 0
    leading_zeros: int = -1
    trailing_zeros: int = -1


class BitReader:
    def __init__(self, reader: ByteStreamReader) -> None:
        self._reader = reader
        self._current_byte = 0
        self._current_bit = 0  # mask of the next bit in _current_byte, 0 when a new byte must be read

    def read_bit(self) -> bool:
        if self._current_bit == 0:
            self._current_byte = self._reader.read_byte()
            self._current_bit = 0x80
        result = (self._current_byte & self._current_bit) != 0
        self._current_bit >>= 1
        return result

    def read_bits(self, num_bits: int) -> int:
        result = 0
        for _ in range(num_bits):
            result = (result << 1) | self.read_bit()
        return result


class BitWriter:
    def __init__(self, writer: ByteStreamWriter) -> None:
        self._writer = writer
        self._current_byte = 0
        self._current_bit = 0x80

    def write_bit(self, bit: bool) -> None:
        if bit:
            self._current_byte |= self._current_bit
        self._current_bit >>= 1
        if self._current_bit == 0:
            self._writer.write_byte(self._current_byte)
            self._current_byte = 0
            self._current_bit = 0x80

    def write_bits(self, value: int, num_bits: int, position_of_least_significant_bit: int = 0) -> None:
        for i in range(num_bits, 0, -1):
            self.write_bit(bool((value >> (i - 1 + position_of_least_significant_bit)) & 1))

    def flush(self) -> None:
        if self._current_bit != 0x80:
            self._writer.write_byte(self._current_byte)
            self._current_byte = 0
            self._current_bit = 0x80


def _read_double(bit_reader: BitReader, state: _DoubleValueState) -> None:
    if not bit_reader.read_bit():
        return

    if not bit_reader.read_bit():
        if state.leading_zeros < 0:
            raise MetricsSerializationError("Double value reuses a block position before any was set")
        num_bits = BITS_IN_LONG - state.leading_zeros - state.trailing_zeros
    else:
        # a new block position was started since the value starts with "11".
        state.leading_zeros = bit_reader.read_bits(NUM_BITS_TO_ENCODE_NUM_LEADING_ZEROS)
        num_bits = bit_reader.read_bits(NUM_BITS_TO_ENCODE_NUM_MEANINGFUL_BITS)
        if num_bits == 0:
            # 64 meaningful bits overflow the 6 bits field. A real 0 would have been encoded as a single "0" bit.
            num_bits = BITS_IN_LONG
        state.trailing_zeros = BITS_IN_LONG - state.leading_zeros - num_bits
        if state.trailing_zeros < 0:
            raise MetricsSerializationError(
                f"Invalid double value block: {state.leading_zeros} leading zeros and {num_bits} meaningful bits"
            )

    state.bits ^= bit_reader.read_bits(num_bits) << state.trailing_zeros


def _write_double(bit_writer: BitWriter, value: float, state: _DoubleValueState) -> None:
    bits = _double_to_bits(value)
    xor = bits ^ state.bits
    state.bits = bits
    if xor == 0:
        bit_writer.write_bit(False)
        return

    bit_writer.write_bit(True)
    leading_zeros = min(BITS_IN_LONG - xor.bit_length(), MAX_LEADING_ZEROS_LENGTH)
    trailing_zeros = (xor & -xor).bit_length() - 1

    expected_size = (
        NUM_BITS_TO_ENCODE_NUM_LEADING_ZEROS
        + NUM_BITS_TO_ENCODE_NUM_MEANINGFUL_BITS
        + BITS_IN_LONG
        - leading_zeros
        - trailing_zeros
    )
    previous_block_size = BITS_IN_LONG - state.leading_zeros - state.trailing_zeros
    if (
        state.leading_zeros > 0
        and leading_zeros >= state.leading_zeros
        and trailing_zeros >= state.trailing_zeros
        and previous_block_size < expected_size
    ):
        # at least as many leading and trailing zeros as the previous block, reuse its position.
        bit_writer.write_bit(False)
        bit_writer.write_bits(xor, previous_block_size, state.trailing_zeros)
    else:
        bit_writer.write_bit(True)
        num_meaningful_bits = BITS_IN_LONG - leading_zeros - trailing_zeros
        bit_writer.write_bits(leading_zeros, NUM_BITS_TO_ENCODE_NUM_LEADING_ZEROS)
        # 64 is written as 0 (6 bits overflow), see _read_double.
        bit_writer.write_bits(num_meaningful_bits, NUM_BITS_TO_ENCODE_NUM_MEANINGFUL_BITS)
        bit_writer.write_bits(xor, num_meaningful_bits, trailing_zeros)
        state.leading_zeros = leading_zeros
        state.trailing_zeros = trailing_zeros


def _deserialize_bits(reader: ByteStreamReader, expected_count: Optional[int]) -> List[int]:
    reader.read_byte()  # version, not in use yet.
    count = reader.read_var_uint32()
    if expected_count is not None and count != expected_count:
        raise MetricsSerializationError(f"Wrong count in serialized data: expected {expected_count}, but was {count}")

    result: List[int] = []
    if count == 0:
        return result

    bit_reader = BitReader(reader)
    state = _DoubleValueState()
    for _ in range(count):
        _read_double(bit_reader, state)
        result.append(state.bits)
    return result


def deserialize(reader: ByteStreamReader, expected_count: int = None) -> List[float]:
    return [_bits_to_double(bits) for bits in _deserialize_bits(reader, expected_count)]


def deserialize_to_nullable(reader: ByteStreamReader) -> List[Optional[float]]:
    """
    Same as deserialize(), with NaN (the server's "no value" marker) turned into None.
    """
    return [None if math.isnan(value) else value for value in deserialize(reader)]


def serialize(writer: ByteStreamWriter, values: Iterable[float]) -> None:
    values = list(values)
    writer.write_byte(SERIALIZATION_VERSION)
    writer.write_var_uint32(len(values))
    if not values:
        return

    bit_writer = BitWriter(writer)
    state = _DoubleValueState()
    for value in values:
        _write_double(bit_writer, value, state)
    bit_writer.flush()
