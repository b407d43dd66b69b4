from __future__ import annotations

import logging
from typing import List

from bitmap import BitmapDecodeError, render_bitmap
from common.types import DEFAULT_PALETTE, ChainID, Palette, TokenMetadata
from common.utils import BMP_DATA_URI_PREFIX, decode_base64_data_uri, is_bmp_data_uri


log = logging.getLogger(__name__)


def bitmap_field_as_text(value: str, palette: Palette = DEFAULT_PALETTE) -> str:
    """
    Render a data:image/bmp;base64 URI as an indented character grid with a
    dimensions header. Raises ValueError (BitmapDecodeError or bad base64).
    """
    raw = decode_base64_data_uri(value, BMP_DATA_URI_PREFIX)
    out = render_bitmap(raw, palette)
    img = out.image
    return (
        f"  Dimensions: {img.width}x{img.height}, BPP: {img.bit_depth}\n"
        "  Bitfield:\n"
        f"{out.text}"
    )


def _field_lines(label: str, value: str, palette: Palette) -> List[str]:
    if is_bmp_data_uri(value):
        try:
            return [f"{label} (BMP Bitfield):", bitmap_field_as_text(value, palette)]
        except BitmapDecodeError as e:
            log.debug("%s: bitmap not rendered: %s", label, e)
        except ValueError as e:
            log.debug("%s: bitmap payload not decodable: %s", label, e)
    return [f"{label}: {value}"]


def format_metadata_as_text(
    metadata: TokenMetadata,
    chain_id: ChainID,
    token_id: str,
    palette: Palette = DEFAULT_PALETTE,
) -> str:
    """
    Plain-text view of a token's metadata. Bitmap data URIs in `image` and
    `external_url` are drawn with `palette`; if drawing fails the raw value
    is shown instead.
    """
    lines = [
        "ERC721 Token Metadata",
        "====================",
        "",
        f"Chain ID: {chain_id}",
        f"Token ID: {token_id}",
        "",
    ]
    if metadata.name:
        lines.append(f"Name: {metadata.name}")
    if metadata.description:
        lines.append(f"Description: {metadata.description}")
    if metadata.image:
        lines.extend(_field_lines("Image", metadata.image, palette))
    if metadata.external_url:
        lines.extend(_field_lines("External URL", metadata.external_url, palette))
    if metadata.properties:
        lines.append("")
        lines.append("Properties:")
        for key in sorted(metadata.properties):
            lines.append(f"  - {key}: {metadata.properties[key]}")
    return "\n".join(lines) + "\n"
