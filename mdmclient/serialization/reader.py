#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import io
import struct
from typing import BinaryIO, Union

from mdmclient.exceptions import MetricsSerializationError, UnexpectedEndOfStreamError

# Fixed width fields are little-endian, as written by the server's BinaryWriter.
INT16_FORMAT = struct.Struct("<h")
INT32_FORMAT = struct.Struct("<i")
UINT64_FORMAT = struct.Struct("<Q")
DOUBLE_FORMAT = struct.Struct("<d")

UINT32_MASK = 0xFFFFFFFF
UINT64_MASK = 0xFFFFFFFFFFFFFFFF
# A base-128 uint64 never needs more than 10 bytes, anything longer is garbage.
MAX_VARINT_BYTES = 10


class ByteStreamReader:
    """
    Sequential reader over a seekable binary stream.

    The position is exposed and can be set, because the response format stores its interning tables after the
    records and refers to them with offsets relative to the position of the offset field.
    Every read past the end of the stream raises UnexpectedEndOfStreamError.
    """

    def __init__(self, source: Union[bytes, bytearray, memoryview, BinaryIO]) -> None:
        if isinstance(source, (bytes, bytearray, memoryview)):
            self._stream: BinaryIO = io.BytesIO(source)
        else:
            if not source.seekable():
                raise ValueError("ByteStreamReader requires a seekable stream, buffer the body first")
            self._stream = source

    @property
    def position(self) -> int:
        return self._stream.tell()

    @position.setter
    def position(self, value: int) -> None:
        if value < 0:
            raise MetricsSerializationError(f"Cannot seek to a negative position {value}")
        self._stream.seek(value)

    def skip(self, count: int) -> None:
        self.position = self.position + count

    def read_bytes(self, count: int) -> bytes:
        position = self._stream.tell()
        data = self._stream.read(count)
        if len(data) != count:
            raise UnexpectedEndOfStreamError(position, count, len(data))
        return data

    def read_byte(self) -> int:
        return self.read_bytes(1)[0]

    def read_boolean(self) -> bool:
        return self.read_byte() != 0

    def read_int16(self) -> int:
        return INT16_FORMAT.unpack(self.read_bytes(INT16_FORMAT.size))[0]

    def read_int32(self) -> int:
        return INT32_FORMAT.unpack(self.read_bytes(INT32_FORMAT.size))[0]

    def read_uint64(self) -> int:
        return UINT64_FORMAT.unpack(self.read_bytes(UINT64_FORMAT.size))[0]

    def read_double(self) -> float:
        return DOUBLE_FORMAT.unpack(self.read_bytes(DOUBLE_FORMAT.size))[0]

    def read_var_uint64(self) -> int:
        value = 0
        shift = 0
        for _ in range(MAX_VARINT_BYTES):
            b = self.read_byte()
            value |= (b & 0x7F) << shift
            shift += 7
            if not b & 0x80:
                return value & UINT64_MASK
        raise MetricsSerializationError(f"Base-128 value longer than {MAX_VARINT_BYTES} bytes")

    def read_var_uint32(self) -> int:
        # Same encoding as uint64, truncated like a cast.
        return self.read_var_uint64() & UINT32_MASK

    def read_string(self) -> str:
        """
        A string prefixed with its UTF-8 byte length, the length itself being base-128 encoded.
        """
        length = self.read_var_uint32()
        position = self.position
        data = self.read_bytes(length)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MetricsSerializationError(f"Invalid UTF-8 string at position {position}: {e}") from e
