from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

import numpy as np

from bitmap.decoder import Buffer, DecodedImage, decode_bitmap
from common.types import DEFAULT_PALETTE, Palette


log = logging.getLogger(__name__)

ROW_INDENT = "    "

# Lower bounds (inclusive) of the palette brackets on a 0..255 scale,
# darkest bracket first: <51 -> 4, 51..101 -> 3, ..., >=204 -> 0.
_LUMA_BINS = np.array([51, 102, 153, 204])


@dataclass(frozen=True)
class RenderedBitmap:
    image: DecodedImage
    lines: List[str]

    @property
    def text(self) -> str:
        return "".join(line + "\n" for line in self.lines)


def luminance_bgr(b: np.ndarray, g: np.ndarray, r: np.ndarray) -> np.ndarray:
    """Integer perceptual luminance (ITU-R 601 weights), 0..255."""
    return (299 * r.astype(np.int32) + 587 * g.astype(np.int32) + 114 * b.astype(np.int32)) // 1000


def palette_indices(lum: np.ndarray) -> np.ndarray:
    """Map luminance values to palette slots (0 = lightest, 4 = darkest)."""
    return 4 - np.digitize(lum, _LUMA_BINS)


def _row_indices(row: np.ndarray, width: int, depth: int) -> np.ndarray:
    """
    Palette slot for every pixel of one row whose bytes are present.
    A short row yields fewer than `width` entries; missing pixels are skipped.
    """
    if depth == 1:
        return np.unpackbits(row)[:width].astype(np.intp)
    if depth == 4:
        nib = np.empty(row.size * 2, dtype=np.int32)
        nib[0::2] = row >> 4
        nib[1::2] = row & 0x0F
        return palette_indices(nib[:width] * 17)
    if depth == 8:
        return palette_indices(row[:width])
    bpp = depth // 8
    n = min(width, row.size // bpp)
    px = row[: n * bpp].reshape(n, bpp)
    return palette_indices(luminance_bgr(px[:, 0], px[:, 1], px[:, 2]))


def render_image(img: DecodedImage, palette: Palette = DEFAULT_PALETTE) -> RenderedBitmap:
    """Render an already-decoded image into text rows, top row first."""
    tokens = np.array(palette.tokens, dtype=object)
    lines: List[str] = []
    skipped = 0
    for y in range(img.height):
        idx = _row_indices(img.row(y), img.width, img.bit_depth)
        skipped += img.width - idx.size
        lines.append(ROW_INDENT + "".join(tokens[idx]))
    if skipped:
        log.debug("skipped %d out-of-bounds pixels", skipped)
    return RenderedBitmap(image=img, lines=lines)


def render_bitmap(buf: Buffer, palette: Palette = DEFAULT_PALETTE) -> RenderedBitmap:
    """
    Decode a BMP buffer and render it as character art.

    Raises a BitmapDecodeError subclass if the buffer is not a supported bitmap;
    no partial output is returned in that case.
    """
    return render_image(decode_bitmap(buf), palette)
