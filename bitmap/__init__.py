"""
Bitmap -> character art

Decodes raw BMP buffers (1/4/8/24/32-bit, uncompressed) and maps each
pixel's brightness onto a 5-token text palette.

Usage:
    from bitmap import render_bitmap
    print(render_bitmap(bmp_bytes).text)
"""
from .decoder import (
    BitmapDecodeError,
    BadSignature,
    DecodedImage,
    InvalidDimensions,
    TooShort,
    TruncatedData,
    UnsupportedCompression,
    UnsupportedDepth,
    decode_bitmap,
)
from .render import RenderedBitmap, render_bitmap, render_image

__all__ = [
    "BitmapDecodeError",
    "BadSignature",
    "DecodedImage",
    "InvalidDimensions",
    "TooShort",
    "TruncatedData",
    "UnsupportedCompression",
    "UnsupportedDepth",
    "decode_bitmap",
    "RenderedBitmap",
    "render_bitmap",
    "render_image",
]
