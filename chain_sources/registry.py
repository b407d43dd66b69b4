from __future__ import annotations

"""
Chain id -> metadata source routing.

The registry is built once at startup from the configured (chain id, source
config) pairs and handed to the HTTP layer. Lookups for known chain ids take a
shared lock. A lookup for an unknown id takes the discovery mutex, checks
again, then asks every registered source which chain it serves; the first
match is stored (under the exclusive lock) for the requested id. Probing
never holds the exclusive lock, so lookups of known ids are not held up by a
slow node. The same source object may be reachable under more than one key.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Protocol, Tuple

from common.types import LEGACY_CHAIN_ID, ChainID, TokenMetadata
from chain_sources.rpc import ERC721Source


log = logging.getLogger(__name__)


class Source(Protocol):
    def chain_id(self) -> ChainID: ...

    def get_token_metadata(self, token_id: str) -> TokenMetadata: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class SourceConfig:
    rpc_url: str
    contract_address: str
    timeout: float = 10.0


SourceFactory = Callable[[SourceConfig], Source]


def erc721_factory(cfg: SourceConfig) -> Source:
    return ERC721Source(cfg.rpc_url, cfg.contract_address, timeout=cfg.timeout)


class ChainNotFoundError(LookupError):
    def __init__(self, chain_id: ChainID):
        super().__init__(f"no RPC server configured for chain ID {chain_id}")
        self.chain_id = chain_id


class RegistryInitError(RuntimeError):
    pass


class ReadWriteLock:
    """
    Many readers or one writer. Writers are preferred: once a writer is
    waiting, new readers block until it is done.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SourceRegistry:
    def __init__(
        self,
        configs: Mapping[ChainID, SourceConfig],
        source_factory: SourceFactory = erc721_factory,
    ):
        """
        Build one source per config entry. An entry keyed by chain id 0
        (legacy single-RPC mode) is re-keyed under the chain id its node
        reports; if that query fails, construction fails.
        """
        self._lock = ReadWriteLock()
        self._discovery = threading.Lock()
        self._sources: Dict[ChainID, Source] = {}
        self._closed = False

        built: List[Source] = []
        try:
            for chain_id, cfg in configs.items():
                try:
                    source = source_factory(cfg)
                except Exception as e:
                    raise RegistryInitError(f"failed to create source for chain {chain_id} (RPC {cfg.rpc_url}): {e}") from e
                built.append(source)
                if chain_id == LEGACY_CHAIN_ID:
                    try:
                        chain_id = int(source.chain_id())
                    except Exception as e:
                        raise RegistryInitError(f"failed to get chain ID from RPC {cfg.rpc_url}: {e}") from e
                    log.info("Resolved chain ID %d from RPC", chain_id, extra={"rpc_url": cfg.rpc_url})
                if chain_id in self._sources:
                    raise RegistryInitError(f"chain ID {chain_id} configured more than once")
                self._sources[chain_id] = source
                log.info(
                    "Configured chain %d: RPC=%s, Contract=%s",
                    chain_id,
                    cfg.rpc_url,
                    cfg.contract_address,
                )
        except Exception:
            for source in built:
                try:
                    source.close()
                except Exception:
                    log.exception("Error closing source after failed startup")
            self._sources.clear()
            raise

    def __enter__(self) -> "SourceRegistry":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------- public API --------

    def resolve(self, chain_id: ChainID) -> Source:
        """
        Source serving `chain_id`. Unknown ids are discovered by probing every
        registered source once; the result is cached.

        Raises ChainNotFoundError if nothing serves the chain.
        """
        if chain_id == LEGACY_CHAIN_ID:
            raise ChainNotFoundError(chain_id)

        with self._lock.read():
            source = self._sources.get(chain_id)
        if source is not None:
            return source

        with self._discovery:
            # another caller may have finished the same discovery meanwhile
            with self._lock.read():
                source = self._sources.get(chain_id)
                candidates = list(self._sources.items())
            if source is not None:
                return source
            source = self._discover(chain_id, candidates)
            if source is None:
                raise ChainNotFoundError(chain_id)
            with self._lock.write():
                self._sources[chain_id] = source
            log.info("Found matching RPC server for chain ID %d", chain_id)
            return source

    def chain_ids(self) -> List[ChainID]:
        with self._lock.read():
            return sorted(self._sources)

    def close(self) -> None:
        """Release every distinct source exactly once."""
        with self._discovery, self._lock.write():
            if self._closed:
                return
            self._closed = True
            seen = set()
            for chain_id, source in self._sources.items():
                if id(source) in seen:
                    continue
                seen.add(id(source))
                try:
                    source.close()
                    log.info("Closed source for chain %d", chain_id)
                except Exception:
                    log.exception("Error closing source for chain %d", chain_id)
            self._sources.clear()

    # -------- internals --------

    @staticmethod
    def _discover(chain_id: ChainID, candidates: List[Tuple[ChainID, Source]]) -> Optional[Source]:
        probed = set()
        for known_id, source in candidates:
            if id(source) in probed:
                continue
            probed.add(id(source))
            try:
                reported = int(source.chain_id())
            except Exception as e:
                log.warning(
                    "Failed to get chain ID from source for chain %d: %s",
                    known_id,
                    e,
                    extra={"requested_chain_id": chain_id},
                )
                continue
            if reported == chain_id:
                return source
        return None
