from __future__ import annotations
"""
BMP container parsing.

Only the classic layout is understood:
  - 14-byte file header ("BM", file size, reserved, pixel-data offset)
  - 40-byte BITMAPINFOHEADER (width, signed height, planes, bit depth, ...)
  - uncompressed pixel rows, each padded to a 4-byte boundary

Positive height means rows are stored bottom-up; negative height means
top-down. The sign is captured before the height is made positive.
"""

import struct
from dataclasses import dataclass
from typing import Union

import numpy as np


BMP_SIGNATURE = 0x4D42  # "BM" little-endian
FILE_HEADER_SIZE = 14
INFO_HEADER_SIZE = 40
MIN_BMP_SIZE = FILE_HEADER_SIZE + INFO_HEADER_SIZE

SUPPORTED_DEPTHS = (1, 4, 8, 24, 32)

BI_RGB = 0
BI_BITFIELDS = 3

_FILE_HEADER = struct.Struct("<HIII")
_INFO_HEADER = struct.Struct("<IiiHHIIiiII")

Buffer = Union[bytes, bytearray, memoryview]


# -----------------------------
# Errors
# -----------------------------

class BitmapDecodeError(ValueError):
    """Structural problem with a bitmap buffer; the whole render is abandoned."""


class TooShort(BitmapDecodeError):
    pass


class BadSignature(BitmapDecodeError):
    pass


class UnsupportedDepth(BitmapDecodeError):
    def __init__(self, depth: int):
        super().__init__(f"unsupported bits per pixel: {depth}")
        self.depth = depth


class UnsupportedCompression(BitmapDecodeError):
    def __init__(self, compression: int, depth: int):
        super().__init__(f"unsupported compression {compression} for {depth}-bit bitmap")
        self.compression = compression
        self.depth = depth


class InvalidDimensions(BitmapDecodeError):
    pass


class TruncatedData(BitmapDecodeError):
    def __init__(self, needed: int, got: int):
        super().__init__(f"BMP data incomplete: need {needed} bytes, have {got}")
        self.needed = needed
        self.got = got


# -----------------------------
# Decoded header + pixel view
# -----------------------------

@dataclass(frozen=True)
class DecodedImage:
    """
    Parsed header plus a view into the original buffer.

    Attributes:
        width, height: pixel dimensions (height already made positive).
        bit_depth: one of SUPPORTED_DEPTHS.
        stride: bytes per stored row including padding.
        offset: byte offset of the first stored row.
        top_down: True when the header height was negative.
        compression: raw compression field from the info header.
        file_size: file size field from the file header (informational).
        data: the whole buffer as uint8.
    """
    width: int
    height: int
    bit_depth: int
    stride: int
    offset: int
    top_down: bool
    compression: int
    file_size: int
    data: np.ndarray

    def stored_row_index(self, visual_y: int) -> int:
        """Map a visual row (0 = top) to its stored row index."""
        return visual_y if self.top_down else self.height - 1 - visual_y

    def row(self, visual_y: int) -> np.ndarray:
        """
        Bytes of one visual row. May be shorter than `stride` (or empty) when
        the row runs past the end of the buffer.
        """
        start = self.offset + self.stored_row_index(visual_y) * self.stride
        return self.data[start:start + self.stride]


def row_stride(width: int, bit_depth: int) -> int:
    """Row length in bytes, rounded up to a 4-byte boundary."""
    return ((width * bit_depth + 31) // 32) * 4


def decode_bitmap(buf: Buffer) -> DecodedImage:
    """
    Validate the headers of `buf` and return a DecodedImage.

    Raises a BitmapDecodeError subclass on any structural problem.
    """
    if len(buf) < MIN_BMP_SIZE:
        raise TooShort(f"BMP data too short: {len(buf)} bytes (< {MIN_BMP_SIZE})")

    signature, file_size, _reserved, offset = _FILE_HEADER.unpack_from(buf, 0)
    if signature != BMP_SIGNATURE:
        raise BadSignature(f"invalid BMP signature: 0x{signature:04X}")

    (
        _hdr_size,
        width,
        height,
        _planes,
        bit_depth,
        compression,
        _image_size,
        _xres,
        _yres,
        _colors_used,
        _colors_important,
    ) = _INFO_HEADER.unpack_from(buf, FILE_HEADER_SIZE)

    if bit_depth not in SUPPORTED_DEPTHS:
        raise UnsupportedDepth(bit_depth)
    if compression != BI_RGB and not (compression == BI_BITFIELDS and bit_depth == 32):
        raise UnsupportedCompression(compression, bit_depth)
    if width < 0:
        raise InvalidDimensions(f"negative width: {width}")

    top_down = height < 0
    height = abs(height)

    stride = row_stride(width, bit_depth)
    needed = offset + stride * height
    if needed > len(buf):
        raise TruncatedData(needed, len(buf))

    return DecodedImage(
        width=width,
        height=height,
        bit_depth=bit_depth,
        stride=stride,
        offset=offset,
        top_down=top_down,
        compression=compression,
        file_size=file_size,
        data=np.frombuffer(buf, dtype=np.uint8),
    )
