"""
Chain sources — where token metadata comes from

Provides:
- ERC721Source: one JSON-RPC node + one ERC-721 contract (tokenURI lookups)
- SourceRegistry: chain id -> source routing with on-demand discovery

Usage:
    from chain_sources import SourceRegistry, SourceConfig
    reg = SourceRegistry({1: SourceConfig("https://...", "0x...")})
    meta = reg.resolve(1).get_token_metadata("42")
"""
from .rpc import ERC721Source, SourceError
from .registry import ChainNotFoundError, RegistryInitError, SourceConfig, SourceRegistry

__all__ = [
    "ERC721Source",
    "SourceError",
    "ChainNotFoundError",
    "RegistryInitError",
    "SourceConfig",
    "SourceRegistry",
]
