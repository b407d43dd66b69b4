from __future__ import annotations

import base64
import binascii
from typing import Optional

from common.types import ChainID


JSON_DATA_URI_PREFIX = "data:application/json;base64,"
BMP_DATA_URI_PREFIX = "data:image/bmp;base64,"

IPFS_GATEWAY = "https://ipfs.io/"

MAX_UINT256 = (1 << 256) - 1


def parse_chain_id(s: str) -> ChainID:
    """Parse a decimal chain id; must be a non-negative integer."""
    s = "" if s is None else str(s)
    if not (s.isascii() and s.isdigit()):
        raise ValueError(f"invalid chain ID: {s!r} (must be a non-negative integer)")
    return int(s, 10)


def parse_token_id(s: Optional[str]) -> str:
    """
    Validate a token id and return it in canonical decimal form.
    Token ids are uint256, so they stay strings at the edges.
    """
    if s is None or not str(s).strip():
        raise ValueError("token ID cannot be empty")
    s = str(s).strip()
    if not (s.isascii() and s.isdigit()):
        raise ValueError(f"invalid token ID: {s!r}")
    v = int(s, 10)
    if v > MAX_UINT256:
        raise ValueError(f"token ID out of uint256 range: {s}")
    return str(v)


def is_bmp_data_uri(value: str) -> bool:
    return value.startswith(BMP_DATA_URI_PREFIX)


def decode_base64_data_uri(uri: str, prefix: str) -> bytes:
    """Strip `prefix` from a data URI and base64-decode the remainder."""
    if not uri.startswith(prefix):
        raise ValueError(f"not a {prefix!r} data URI")
    try:
        return base64.b64decode(uri[len(prefix):], validate=True)
    except binascii.Error as e:
        raise ValueError(f"failed to decode base64: {e}") from e


def ipfs_to_http(uri: str, gateway: str = IPFS_GATEWAY) -> str:
    """Rewrite ipfs://CID/... and ipfs/CID/... to an HTTP gateway URL."""
    if uri.startswith("ipfs://"):
        return gateway + "ipfs/" + uri[len("ipfs://"):]
    if uri.startswith("ipfs/"):
        return gateway + uri
    return uri
