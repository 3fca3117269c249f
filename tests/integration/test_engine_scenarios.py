"""End-to-end scenarios for the persistence engine.

Exercises the full save path (scheduler → dispatcher → worker → storage) with
real backends, including the SQLite store and a thread-backed worker.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from state_persistence.engine.models import PersistenceConfig, SaveStatus
from state_persistence.engine.persistence_engine import PersistenceEngine
from state_persistence.errors import ErrorCode
from state_persistence.exchange.local import LocalExchange
from state_persistence.observability.events import EventType
from state_persistence.serialization.worker import SerializationWorker
from state_persistence.storage.memory import MemoryStorage
from state_persistence.storage.sqlite import SqliteStorage, SqliteStorageConfig


@pytest.fixture
def sqlite_storage(tmp_path: Path):
    """Provide a SQLite store in a temporary directory."""
    with SqliteStorage(SqliteStorageConfig(db_path=tmp_path / "state.db")) as storage:
        yield storage


class TestDebouncedScenarios:
    """Timing scenarios for the debounced save path."""

    @pytest.mark.asyncio
    async def test_second_save_within_window_wins(self, memory_storage: MemoryStorage) -> None:
        """Two saves inside one debounce window commit only the second."""
        config = PersistenceConfig(debounce_delay=0.5, use_worker=False)
        engine = PersistenceEngine(memory_storage, config=config)

        engine.save_state({"a": 1})
        await asyncio.sleep(0.1)
        engine.save_state({"a": 2})
        await asyncio.sleep(0.6)
        await engine.wait_for_saves()

        assert engine.load_state() == {"a": 2}
        assert engine.scheduler.get_metrics().commit_count == 1
        await engine.close()

    @pytest.mark.asyncio
    async def test_clear_during_burst(self, memory_storage: MemoryStorage) -> None:
        """Clearing in the middle of a burst leaves only later saves."""
        config = PersistenceConfig(debounce_delay=0.05, use_worker=False)
        async with PersistenceEngine(memory_storage, config=config) as engine:
            engine.save_state({"projects": ["before"]})
            engine.clear_state()
            engine.save_state({"projects": ["after"]})
            await asyncio.sleep(0.1)
            await engine.wait_for_saves()

            assert engine.load_state() == {"projects": ["after"]}


class TestWorkerScenarios:
    """Scenarios that offload serialization to a worker."""

    @pytest.mark.asyncio
    async def test_large_state_through_thread_worker(
        self, sqlite_storage: SqliteStorage, event_bus, recorded_events, make_large_state
    ) -> None:
        """A large state is serialized off-loop and lands in SQLite."""
        state = make_large_state(64 * 1024)
        with ThreadPoolExecutor(max_workers=1) as executor:
            config = PersistenceConfig(debounce_delay=0.01, large_payload_threshold=4096)
            engine = PersistenceEngine(
                sqlite_storage,
                events=event_bus,
                config=config,
                worker=SerializationWorker(executor=executor),
            )

            outcome = await engine.save_state(state)
            metrics = engine.dispatcher.get_metrics()
            await engine.close()

        assert outcome.success
        assert outcome.size > 64 * 1024
        assert metrics.worker_count == 1
        assert metrics.inline_count == 0
        assert engine.load_state() == state
        assert EventType.STATE_SAVED in [event.type for event in recorded_events]

    @pytest.mark.asyncio
    async def test_silent_worker_times_out(
        self, memory_storage: MemoryStorage, event_bus, recorded_events, silent_worker, make_large_state
    ) -> None:
        """A worker that never answers yields a TIMEOUT_ERROR save failure."""
        config = PersistenceConfig(
            debounce_delay=0.01, large_payload_threshold=1024, worker_timeout=0.05
        )
        engine = PersistenceEngine(
            memory_storage, events=event_bus, config=config, worker=silent_worker
        )

        outcome = await engine.save_state(make_large_state(4096))

        assert not outcome.success
        assert outcome.code == ErrorCode.TIMEOUT_ERROR
        assert engine.dispatcher.pending_count == 0
        assert engine.status == SaveStatus.IDLE
        assert memory_storage.read(config.storage_key) is None
        failures = [e for e in recorded_events if e.type == EventType.STATE_SAVE_FAILED]
        assert failures[0].data["code"] == "TIMEOUT_ERROR"

    @pytest.mark.asyncio
    async def test_worker_fault_falls_back_inline(
        self, memory_storage: MemoryStorage, silent_worker, make_large_state
    ) -> None:
        """After a worker fault the next save serializes inline."""
        config = PersistenceConfig(debounce_delay=0.01, large_payload_threshold=1024)
        engine = PersistenceEngine(memory_storage, config=config, worker=silent_worker)
        state = make_large_state(4096)

        first = engine.save_state(state)
        while not silent_worker.posted:
            await asyncio.sleep(0.005)
        silent_worker.fail(RuntimeError("worker crashed"))

        assert (await first).code == ErrorCode.SERIALIZATION_ERROR
        assert (await engine.save_state(state)).success
        assert engine.load_state() == state
        assert engine.dispatcher.get_metrics().worker_faults == 1


class TestExchangeScenarios:
    """Export and re-import through a local directory."""

    @pytest.mark.asyncio
    async def test_export_then_import(
        self, sqlite_storage: SqliteStorage, tmp_path: Path, sample_state
    ) -> None:
        """An exported state can be imported and installed by the caller."""
        config = PersistenceConfig(debounce_delay=0.01, use_worker=False)
        async with PersistenceEngine(
            sqlite_storage, exchange=LocalExchange(tmp_path / "exports"), config=config
        ) as engine:
            path = await engine.export_to_file(sample_state)
            document = await engine.import_from_file(path)
            assert engine.load_state() is None

            await engine.save_state(document.data)
            assert engine.load_state() == sample_state
