"""
Unit tests for SourceRegistry (chain id routing and discovery)
"""

import os
import sys
import threading
import time

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from chain_sources.registry import (
    ChainNotFoundError,
    ReadWriteLock,
    RegistryInitError,
    SourceConfig,
    SourceRegistry,
)
from common.types import TokenMetadata


class FakeSource:
    """Stands in for ERC721Source; counts probes and closes."""

    def __init__(self, reported, delay: float = 0.0, gate: threading.Event = None):
        self.reported = reported
        self.delay = delay
        self.gate = gate
        self.probes = 0
        self.closes = 0
        self._lock = threading.Lock()

    def chain_id(self):
        with self._lock:
            self.probes += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.delay:
            time.sleep(self.delay)
        if isinstance(self.reported, Exception):
            raise self.reported
        return self.reported

    def get_token_metadata(self, token_id):
        return TokenMetadata(name=f"token {token_id}")

    def close(self):
        self.closes += 1


def _registry(pool: dict, sources: dict) -> SourceRegistry:
    """Registry whose factory hands out FakeSources from `pool` by rpc_url."""
    configs = {cid: SourceConfig(rpc_url=url, contract_address="0x" + "0" * 40) for cid, url in sources.items()}
    return SourceRegistry(configs, source_factory=lambda cfg: pool[cfg.rpc_url])


@pytest.fixture
def pool():
    return {}


class TestConfiguredChains:
    def test_resolve_configured(self, pool):
        """Configured ids resolve to their source, every time, without probing"""
        pool["a"] = FakeSource(1)
        pool["b"] = FakeSource(137)
        reg = _registry(pool, {1: "a", 137: "b"})
        for _ in range(3):
            assert reg.resolve(1) is pool["a"]
            assert reg.resolve(137) is pool["b"]
        assert pool["a"].probes == 0
        assert pool["b"].probes == 0
        assert reg.chain_ids() == [1, 137]

    def test_legacy_chain_rekeyed(self, pool):
        """Chain id 0 is replaced by the id the node reports"""
        pool["a"] = FakeSource(10)
        reg = _registry(pool, {0: "a"})
        assert reg.chain_ids() == [10]
        assert reg.resolve(10) is pool["a"]

    def test_legacy_chain_probe_failure_fails_startup(self, pool):
        pool["ok"] = FakeSource(1)
        pool["down"] = FakeSource(ConnectionError("node down"))
        with pytest.raises(RegistryInitError, match="failed to get chain ID"):
            _registry(pool, {1: "ok", 0: "down"})
        # sources built before the failure are released
        assert pool["ok"].closes == 1
        assert pool["down"].closes == 1

    def test_factory_failure_fails_startup(self, pool):
        """A source that cannot be built (bad address) fails startup and releases earlier sources"""
        pool["ok"] = FakeSource(1)

        def factory(cfg):
            if cfg.rpc_url == "bad":
                raise ValueError("invalid contract address: 'nope'")
            return pool[cfg.rpc_url]

        configs = {
            1: SourceConfig(rpc_url="ok", contract_address="0x" + "0" * 40),
            5: SourceConfig(rpc_url="bad", contract_address="nope"),
        }
        with pytest.raises(RegistryInitError, match="invalid contract address") as exc:
            SourceRegistry(configs, source_factory=factory)
        assert isinstance(exc.value.__cause__, ValueError)
        assert pool["ok"].closes == 1

    def test_duplicate_chain_id_fails_startup(self, pool):
        """A legacy entry resolving to an already configured id is rejected"""
        pool["a"] = FakeSource(1)
        pool["legacy"] = FakeSource(1)
        with pytest.raises(RegistryInitError, match="chain ID 1 configured more than once"):
            _registry(pool, {1: "a", 0: "legacy"})
        assert pool["a"].closes == 1
        assert pool["legacy"].closes == 1

    def test_sentinel_never_resolves(self, pool):
        pool["a"] = FakeSource(0)
        reg = _registry(pool, {1: "a"})
        with pytest.raises(ChainNotFoundError):
            reg.resolve(0)
        assert pool["a"].probes == 0


class TestDiscovery:
    def test_discovered_and_cached(self, pool):
        """An unconfigured id served by a known node is found once, then cached"""
        pool["a"] = FakeSource(1)
        pool["b"] = FakeSource(5)
        reg = _registry(pool, {1: "a", 2: "b"})

        assert reg.resolve(5) is pool["b"]
        probes_after_first = pool["a"].probes + pool["b"].probes
        assert pool["b"].probes == 1

        assert reg.resolve(5) is pool["b"]
        assert pool["a"].probes + pool["b"].probes == probes_after_first
        assert reg.chain_ids() == [1, 2, 5]

    def test_not_found(self, pool):
        pool["a"] = FakeSource(1)
        pool["b"] = FakeSource(2)
        reg = _registry(pool, {1: "a", 2: "b"})
        with pytest.raises(ChainNotFoundError) as ei:
            reg.resolve(99)
        assert ei.value.chain_id == 99
        assert "99" in str(ei.value)
        assert pool["a"].probes == 1
        assert pool["b"].probes == 1
        assert 99 not in reg.chain_ids()

    def test_probe_failure_is_skipped(self, pool, caplog):
        """A node that errors during the scan is logged and skipped"""
        pool["down"] = FakeSource(TimeoutError("timeout"))
        pool["b"] = FakeSource(42)
        reg = _registry(pool, {1: "down", 2: "b"})
        with caplog.at_level("WARNING", logger="chain_sources.registry"):
            assert reg.resolve(42) is pool["b"]
        assert any("Failed to get chain ID" in r.getMessage() for r in caplog.records)

    def test_each_source_probed_once_per_scan(self, pool):
        """A source already reachable under two keys is only asked once"""
        pool["a"] = FakeSource(7)
        reg = _registry(pool, {1: "a"})
        reg.resolve(7)
        pool["a"].probes = 0
        with pytest.raises(ChainNotFoundError):
            reg.resolve(8)
        assert pool["a"].probes == 1

    def test_concurrent_discovery_shares_one_scan(self, pool):
        """Callers racing on the same new id all get the same source from one scan"""
        pool["a"] = FakeSource(77, delay=0.05)
        reg = _registry(pool, {1: "a"})

        n = 8
        barrier = threading.Barrier(n)
        results = [None] * n
        errors = []

        def worker(i):
            try:
                barrier.wait()
                results[i] = reg.resolve(77)
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert not errors
        assert all(r is pool["a"] for r in results)
        assert pool["a"].probes == 1

    def test_known_lookups_not_blocked_by_probe(self, pool):
        """A slow discovery scan does not hold up lookups of configured ids"""
        gate = threading.Event()
        pool["slow"] = FakeSource(3, gate=gate)
        pool["fast"] = FakeSource(2)
        reg = _registry(pool, {1: "slow", 2: "fast"})

        t = threading.Thread(target=lambda: reg.resolve(3))
        t.start()
        try:
            deadline = time.time() + 2
            while pool["slow"].probes == 0 and time.time() < deadline:
                time.sleep(0.01)
            assert pool["slow"].probes == 1  # scan is in progress and blocked
            t0 = time.perf_counter()
            assert reg.resolve(2) is pool["fast"]
            assert time.perf_counter() - t0 < 0.5
        finally:
            gate.set()
            t.join(timeout=5)
        assert reg.resolve(3) is pool["slow"]


class TestClose:
    def test_close_releases_each_source_once(self, pool):
        """A source cached under two keys is closed exactly once"""
        pool["a"] = FakeSource(9)
        pool["b"] = FakeSource(2)
        reg = _registry(pool, {1: "a", 2: "b"})
        reg.resolve(9)  # "a" now under keys 1 and 9
        reg.close()
        assert pool["a"].closes == 1
        assert pool["b"].closes == 1
        assert reg.chain_ids() == []

    def test_close_is_idempotent(self, pool):
        pool["a"] = FakeSource(1)
        reg = _registry(pool, {1: "a"})
        reg.close()
        reg.close()
        assert pool["a"].closes == 1

    def test_context_manager(self, pool):
        pool["a"] = FakeSource(1)
        with _registry(pool, {1: "a"}) as reg:
            assert reg.resolve(1) is pool["a"]
        assert pool["a"].closes == 1


class TestReadWriteLock:
    def test_readers_share(self):
        lock = ReadWriteLock()
        inside = threading.Event()
        release = threading.Event()

        def reader():
            with lock.read():
                inside.set()
                release.wait(timeout=5)

        t = threading.Thread(target=reader)
        t.start()
        assert inside.wait(timeout=2)
        acquired = []

        def second_reader():
            with lock.read():
                acquired.append(True)

        t2 = threading.Thread(target=second_reader)
        t2.start()
        t2.join(timeout=2)
        assert acquired == [True]
        release.set()
        t.join(timeout=2)

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        order = []
        writing = threading.Event()

        def writer():
            with lock.write():
                writing.set()
                time.sleep(0.1)
                order.append("write-done")

        t = threading.Thread(target=writer)
        t.start()
        assert writing.wait(timeout=2)
        with lock.read():
            order.append("read")
        t.join(timeout=2)
        assert order == ["write-done", "read"]
