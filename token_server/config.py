from __future__ import annotations

"""
Server configuration.

Sources, lowest precedence first:
  1) YAML file (CONFIG_PATH, default config/params.yaml), optional:
        server: {host: 0.0.0.0, port: 8080, rpc_timeout: 10}
        chains:
          1:   {rpc_url: https://..., contract_address: 0x...}
          137: {rpc_url: https://..., contract_address: 0x...}
  2) Environment (a .env file is loaded if present):
        RPC_URL_<CHAIN_ID> + CONTRACT_ADDRESS_<CHAIN_ID>   one pair per chain
        RPC_URL + CONTRACT_ADDRESS                         legacy single chain,
                                                           chain id asked from the node
        HOST, PORT, RPC_TIMEOUT, LOG_LEVEL
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from chain_sources.registry import SourceConfig
from common.types import LEGACY_CHAIN_ID, ChainID


DEFAULT_CONFIG_PATH = "config/params.yaml"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_RPC_TIMEOUT = 10.0


class ConfigError(ValueError):
    pass


@dataclass
class ServerConfig:
    chains: Dict[ChainID, SourceConfig] = field(default_factory=dict)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"


def parse_port(value: Any) -> int:
    """Accept 8080, "8080" or ":8080"."""
    s = str(value).strip()
    if s.startswith(":"):
        s = s[1:]
    try:
        port = int(s)
    except ValueError:
        raise ConfigError(f"invalid PORT: {value!r}") from None
    if not 0 < port < 65536:
        raise ConfigError(f"PORT out of range: {port}")
    return port


def _load_yaml(path: str) -> Dict:
    if not Path(path).exists():
        return {}
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def _chains_from_yaml(data: Mapping, timeout: float) -> Dict[ChainID, SourceConfig]:
    out: Dict[ChainID, SourceConfig] = {}
    for key, entry in (data.get("chains") or {}).items():
        try:
            chain_id = int(key)
        except (TypeError, ValueError):
            raise ConfigError(f"invalid chain id in config file: {key!r}") from None
        if not isinstance(entry, dict) or not entry.get("rpc_url") or not entry.get("contract_address"):
            raise ConfigError(f"chain {chain_id}: rpc_url and contract_address are required")
        address = entry["contract_address"]
        if isinstance(address, int):
            # unquoted 0x... in YAML loads as an int
            address = f"0x{address:040x}"
        out[chain_id] = SourceConfig(
            rpc_url=str(entry["rpc_url"]),
            contract_address=str(address),
            timeout=float(entry.get("timeout", timeout)),
        )
    return out


def _chains_from_env(env: Mapping[str, str], timeout: float) -> Dict[ChainID, SourceConfig]:
    out: Dict[ChainID, SourceConfig] = {}
    for key, value in env.items():
        if not key.startswith("RPC_URL_"):
            continue
        suffix = key[len("RPC_URL_"):]
        try:
            chain_id = int(suffix, 10)
        except ValueError:
            continue
        address = env.get(f"CONTRACT_ADDRESS_{suffix}", "")
        if not address:
            raise ConfigError(f"CONTRACT_ADDRESS_{suffix} is required when RPC_URL_{suffix} is set")
        out[chain_id] = SourceConfig(rpc_url=value, contract_address=address, timeout=timeout)
    return out


def load_config(
    env: Optional[Mapping[str, str]] = None,
    config_path: Optional[str] = None,
) -> ServerConfig:
    """
    Build a ServerConfig from the YAML file and the environment.
    Passing `env` skips .env loading and reads only that mapping (tests).
    """
    if env is None:
        load_dotenv()
        env = os.environ

    data = _load_yaml(config_path or env.get("CONFIG_PATH") or DEFAULT_CONFIG_PATH)
    srv = data.get("server") or {}

    try:
        timeout = float(env.get("RPC_TIMEOUT") or srv.get("rpc_timeout", DEFAULT_RPC_TIMEOUT))
    except ValueError:
        raise ConfigError(f"invalid RPC_TIMEOUT: {env.get('RPC_TIMEOUT')!r}") from None

    chains = _chains_from_yaml(data, timeout)
    chains.update(_chains_from_env(env, timeout))

    if not chains:
        rpc_url = env.get("RPC_URL", "")
        address = env.get("CONTRACT_ADDRESS", "")
        if not rpc_url or not address:
            raise ConfigError(
                "either RPC_URL_<CHAIN_ID> and CONTRACT_ADDRESS_<CHAIN_ID> pairs, "
                "or RPC_URL and CONTRACT_ADDRESS are required"
            )
        # chain id is asked from the node when the registry starts
        chains[LEGACY_CHAIN_ID] = SourceConfig(rpc_url=rpc_url, contract_address=address, timeout=timeout)

    return ServerConfig(
        chains=chains,
        host=env.get("HOST") or str(srv.get("host", DEFAULT_HOST)),
        port=parse_port(env.get("PORT") or srv.get("port", DEFAULT_PORT)),
        log_level=(env.get("LOG_LEVEL") or str(srv.get("log_level", "INFO"))).upper(),
    )
