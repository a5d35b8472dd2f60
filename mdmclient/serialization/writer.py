#
# Copyright (c) Granulate. All rights reserved.
# Licensed under the AGPL3 License. See LICENSE.md in the project root for license information.
#
import io

from mdmclient.serialization.reader import DOUBLE_FORMAT, INT16_FORMAT, INT32_FORMAT, UINT64_FORMAT


class ByteStreamWriter:
    """
    The encoding mirror of ByteStreamReader, over an in-memory buffer.
    """

    def __init__(self) -> None:
        self._buffer = io.BytesIO()

    @property
    def position(self) -> int:
        return self._buffer.tell()

    @position.setter
    def position(self, value: int) -> None:
        self._buffer.seek(value)

    def getvalue(self) -> bytes:
        return self._buffer.getvalue()

    def write_bytes(self, data: bytes) -> None:
        self._buffer.write(data)

    def write_byte(self, value: int) -> None:
        self._buffer.write(bytes((value,)))

    def write_boolean(self, value: bool) -> None:
        self.write_byte(1 if value else 0)

    def write_int16(self, value: int) -> None:
        self._buffer.write(INT16_FORMAT.pack(value))

    def write_int32(self, value: int) -> None:
        self._buffer.write(INT32_FORMAT.pack(value))

    def write_uint64(self, value: int) -> None:
        self._buffer.write(UINT64_FORMAT.pack(value))

    def write_double(self, value: float) -> None:
        self._buffer.write(DOUBLE_FORMAT.pack(value))

    def write_var_uint64(self, value: int) -> None:
        if value < 0:
            raise ValueError(f"cannot base-128 encode a negative value as unsigned: {value}")
        while True:
            b = value & 0x7F
            value >>= 7
            if value:
                self.write_byte(b | 0x80)
            else:
                self.write_byte(b)
                return

    write_var_uint32 = write_var_uint64

    def write_string(self, value: str) -> None:
        data = value.encode("utf-8")
        self.write_var_uint32(len(data))
        self._buffer.write(data)
