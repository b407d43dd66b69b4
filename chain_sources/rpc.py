from __future__ import annotations

"""
ERC-721 metadata source backed by an Ethereum JSON-RPC endpoint.

One instance = one (RPC node, contract) pair. It can:
  - report the chain id the node is serving (eth_chainId)
  - call tokenURI(uint256) on the contract (eth_call) and fetch the document
    the URI points to (inline base64 JSON, IPFS via gateway, or plain HTTP)

Usage:
    src = ERC721Source("https://eth.llamarpc.com", "0xBC4CA0EdA7647A8aB7C2061c2E118A18a936f13D")
    src.chain_id()                 # -> 1
    meta = src.get_token_metadata("1")
    src.close()
"""

import itertools
import json
import logging
import re
from typing import Any, List, Optional

import requests

from common.types import ChainID, TokenMetadata
from common.utils import JSON_DATA_URI_PREFIX, decode_base64_data_uri, ipfs_to_http


log = logging.getLogger(__name__)

# keccak256("tokenURI(uint256)")[:4]
TOKEN_URI_SELECTOR = "c87b56dd"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class SourceError(RuntimeError):
    """Any failure talking to the RPC node or fetching/parsing a metadata document."""


def encode_token_uri_call(token_id: int) -> str:
    """Calldata for tokenURI(uint256): selector + 32-byte big-endian argument."""
    if token_id < 0 or token_id >= 1 << 256:
        raise ValueError("token id out of uint256 range")
    return "0x" + TOKEN_URI_SELECTOR + format(token_id, "064x")


def decode_abi_string(hex_data: str) -> str:
    """Decode an ABI-encoded dynamic `string` return value."""
    data = hex_data[2:] if hex_data.startswith("0x") else hex_data
    try:
        raw = bytes.fromhex(data)
    except ValueError as e:
        raise SourceError(f"malformed eth_call result: {e}") from e
    if len(raw) < 64:
        raise SourceError(f"eth_call result too short for an ABI string ({len(raw)} bytes)")
    offset = int.from_bytes(raw[0:32], "big")
    if offset + 32 > len(raw):
        raise SourceError("ABI string offset out of range")
    length = int.from_bytes(raw[offset:offset + 32], "big")
    start = offset + 32
    if start + length > len(raw):
        raise SourceError("ABI string length out of range")
    try:
        return raw[start:start + length].decode("utf-8")
    except UnicodeDecodeError as e:
        raise SourceError(f"tokenURI is not valid UTF-8: {e}") from e


class ERC721Source:
    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        """
        Params:
            rpc_url: JSON-RPC endpoint (http/https)
            contract_address: 0x-prefixed 20-byte hex address of the ERC-721 contract
            session: optional requests.Session for connection reuse
            timeout: per-request timeout in seconds (RPC and metadata fetches)
        """
        if not rpc_url:
            raise ValueError("rpc_url is required")
        if not _ADDRESS_RE.match(contract_address or ""):
            raise ValueError(f"invalid contract address: {contract_address!r}")
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.timeout = float(timeout)
        self.session = session or requests.Session()
        self._ids = itertools.count(1)
        self._closed = False

    def __repr__(self) -> str:
        return f"ERC721Source(rpc_url={self.rpc_url!r}, contract={self.contract_address})"

    # ----------------------------
    # Public API
    # ----------------------------
    def chain_id(self) -> ChainID:
        """Chain id reported by the node (eth_chainId)."""
        result = self._rpc("eth_chainId", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise SourceError(f"unexpected eth_chainId result: {result!r}") from e

    def token_uri(self, token_id: str) -> str:
        try:
            tid = int(token_id, 10)
            calldata = encode_token_uri_call(tid)
        except ValueError as e:
            raise SourceError(f"invalid token ID: {token_id}") from e
        result = self._rpc("eth_call", [{"to": self.contract_address, "data": calldata}, "latest"])
        if not isinstance(result, str) or result in ("", "0x"):
            raise SourceError(f"empty tokenURI result for token {token_id}")
        return decode_abi_string(result)

    def get_token_metadata(self, token_id: str) -> TokenMetadata:
        try:
            uri = self.token_uri(token_id)
        except SourceError as e:
            raise SourceError(f"failed to get token URI: {e}") from e
        try:
            return self.fetch_metadata_from_uri(uri)
        except SourceError as e:
            raise SourceError(f"failed to fetch metadata: {e}") from e

    def fetch_metadata_from_uri(self, uri: str) -> TokenMetadata:
        """
        Resolve a tokenURI to a metadata document:
          - data:application/json;base64,...  decoded inline
          - ipfs://CID/... or ipfs/CID/...    fetched through the public gateway
          - anything else                     fetched with HTTP GET
        """
        if uri.startswith(JSON_DATA_URI_PREFIX):
            try:
                raw = decode_base64_data_uri(uri, JSON_DATA_URI_PREFIX)
            except ValueError as e:
                raise SourceError(str(e)) from e
            return self._parse_metadata(raw)

        url = ipfs_to_http(uri)
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise SourceError(f"GET {url} failed: {e}") from e
        if r.status_code != 200:
            raise SourceError(f"unexpected status code: {r.status_code}")
        return self._parse_metadata(r.content)

    def close(self) -> None:
        if not self._closed:
            self.session.close()
            self._closed = True

    # ----------------------------
    # Internals
    # ----------------------------
    def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            r = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise SourceError(f"{method} request failed: {e}") from e
        if r.status_code != 200:
            raise SourceError(f"{method}: RPC endpoint returned HTTP {r.status_code}")
        try:
            body = r.json()
        except ValueError as e:
            raise SourceError(f"{method}: invalid JSON-RPC response") from e
        if not isinstance(body, dict):
            raise SourceError(f"{method}: invalid JSON-RPC response")
        if body.get("error"):
            raise SourceError(f"{method}: RPC error: {body['error']}")
        if "result" not in body:
            raise SourceError(f"{method}: JSON-RPC response has no result")
        return body["result"]

    @staticmethod
    def _parse_metadata(raw: bytes) -> TokenMetadata:
        try:
            doc = json.loads(raw)
            return TokenMetadata.from_dict(doc)
        except (TypeError, ValueError) as e:
            raise SourceError(f"failed to parse metadata JSON: {e}") from e
