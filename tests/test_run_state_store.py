"""Tests for the run-state store backends and their registry."""

import fnmatch
import json
from dataclasses import replace

import pytest
import redis.asyncio as redis

from omnichannel.config import PersistenceConfig
from omnichannel.errors import PersistenceFailureError, UnknownStrategyError
from omnichannel.persistence import (
    STORE_FACTORIES,
    FileRunStateStore,
    InMemoryRunStateStore,
    create_run_state_store,
)
from omnichannel.persistence.redis_store import RedisRunStateStore

from tests.conftest import SUBJECT


class FakeRedis:
    """Dict-backed stand-in for the handful of redis.asyncio calls the store makes."""

    def __init__(self, fail: bool = False) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = fail
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise redis.ConnectionError("connection refused")

    async def ping(self):
        self._check()
        return True

    async def set(self, key, value, px=None):
        self._check()
        self.data[key] = value
        self.ttls[key] = px
        return True

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def delete(self, key):
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0

    async def scan_iter(self, match="*"):
        self._check()
        for key in list(self.data):
            if fnmatch.fnmatch(key, match):
                yield key

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_store(fake_redis, clock):
    return RedisRunStateStore(fake_redis, key_prefix="runstate:", max_age_ms=60_000, clock=clock)


@pytest.fixture(params=["memory", "file", "redis"])
def store(request, memory_store, file_store, redis_store):
    return {"memory": memory_store, "file": file_store, "redis": redis_store}[request.param]


class TestStoreContract:
    @pytest.mark.asyncio
    async def test_round_trip_is_byte_identical(self, store):
        await store.init()
        state = '{"pending": [{"id": "call_1"}], "unicode": "café ✓"}'
        await store.save_state(SUBJECT, state)
        assert await store.load_state(SUBJECT) == state

    @pytest.mark.asyncio
    async def test_missing_returns_none(self, store):
        await store.init()
        assert await store.load_state("phone_+10000000000") is None

    @pytest.mark.asyncio
    async def test_save_replaces_previous(self, store):
        await store.init()
        await store.save_state(SUBJECT, "first")
        await store.save_state(SUBJECT, "second")
        assert await store.load_state(SUBJECT) == "second"

    @pytest.mark.asyncio
    async def test_delete_then_load(self, store):
        await store.init()
        await store.save_state(SUBJECT, "state")
        await store.delete_state(SUBJECT)
        assert await store.load_state(SUBJECT) is None

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, store):
        await store.init()
        await store.delete_state("phone_+10000000000")

    @pytest.mark.asyncio
    async def test_expired_record_reads_as_none(self, store, clock):
        await store.init()
        await store.save_state(SUBJECT, "state")
        clock.advance(60_001)
        assert await store.load_state(SUBJECT) is None

    @pytest.mark.asyncio
    async def test_record_at_max_age_is_still_valid(self, store, clock):
        await store.init()
        await store.save_state(SUBJECT, "state")
        clock.advance(60_000)
        assert await store.load_state(SUBJECT) == "state"

    @pytest.mark.asyncio
    async def test_cleanup_removes_only_old_records(self, store, clock):
        await store.init()
        await store.save_state("old", "a")
        clock.advance(30_000)
        await store.save_state("new", "b")
        clock.advance(20_000)

        removed = await store.cleanup_old_states(max_age_ms=40_000)

        assert removed == 1
        assert await store.load_state("old") is None
        assert await store.load_state("new") == "b"

    @pytest.mark.asyncio
    async def test_cleanup_defaults_to_store_max_age(self, store, clock):
        await store.init()
        await store.save_state(SUBJECT, "state")
        clock.advance(60_001)
        assert await store.cleanup_old_states() == 1


class TestFileStore:
    @pytest.mark.asyncio
    async def test_record_format(self, file_store, clock):
        await file_store.init()
        await file_store.save_state(SUBJECT, "opaque")
        data = json.loads(file_store.path_for(SUBJECT).read_text(encoding="utf-8"))
        assert data == {
            "conversationId": SUBJECT,
            "stateString": "opaque",
            "timestamp": clock.now_ms,
        }

    def test_subject_id_is_filename_safe(self, file_store):
        path = file_store.path_for("segment_user_a/b:c")
        assert path.parent == file_store.data_dir
        assert "/" not in path.name

    @pytest.mark.asyncio
    async def test_corrupt_file_is_removed(self, file_store):
        await file_store.init()
        path = file_store.path_for(SUBJECT)
        path.write_text("{truncated", encoding="utf-8")
        assert await file_store.load_state(SUBJECT) is None
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_empty_file_is_removed(self, file_store):
        await file_store.init()
        path = file_store.path_for(SUBJECT)
        path.write_text("  \n", encoding="utf-8")
        assert await file_store.load_state(SUBJECT) is None
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_expired_file_is_removed_on_read(self, file_store, clock):
        await file_store.init()
        await file_store.save_state(SUBJECT, "state")
        clock.advance(60_001)
        await file_store.load_state(SUBJECT)
        assert not file_store.path_for(SUBJECT).exists()

    @pytest.mark.asyncio
    async def test_cleanup_removes_unreadable_files(self, file_store):
        await file_store.init()
        file_store.path_for("broken").write_text("nope", encoding="utf-8")
        await file_store.save_state(SUBJECT, "state")
        assert await file_store.cleanup_old_states() == 1
        assert await file_store.load_state(SUBJECT) == "state"

    @pytest.mark.asyncio
    async def test_invalid_utf8_file_reads_as_none_and_is_removed(self, file_store):
        await file_store.init()
        path = file_store.path_for(SUBJECT)
        path.write_bytes(b"\xff\xfe\x00garbage")
        assert await file_store.load_state(SUBJECT) is None
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_cleanup_removes_invalid_utf8_files(self, file_store):
        await file_store.init()
        file_store.path_for("binary").write_bytes(b"\xff\xfe\x00garbage")
        await file_store.save_state(SUBJECT, "state")
        assert await file_store.cleanup_old_states(0) == 1
        assert not file_store.path_for("binary").exists()
        assert await file_store.load_state(SUBJECT) == "state"

    @pytest.mark.asyncio
    async def test_cleanup_on_missing_directory(self, tmp_path):
        store = FileRunStateStore(data_dir=str(tmp_path / "never-created"))
        assert await store.cleanup_old_states() == 0

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path, clock):
        data_dir = str(tmp_path / "states")
        await FileRunStateStore(data_dir=data_dir, clock=clock).save_state(SUBJECT, "state")
        assert await FileRunStateStore(data_dir=data_dir, clock=clock).load_state(SUBJECT) == "state"

    @pytest.mark.asyncio
    async def test_unwritable_directory_raises(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file", encoding="utf-8")
        store = FileRunStateStore(data_dir=str(blocker / "states"))
        with pytest.raises(PersistenceFailureError):
            await store.save_state(SUBJECT, "state")
        with pytest.raises(PersistenceFailureError):
            await store.init()


class TestRedisStore:
    @pytest.mark.asyncio
    async def test_key_carries_ttl(self, redis_store, fake_redis):
        await redis_store.save_state(SUBJECT, "state")
        assert fake_redis.ttls[f"runstate:{SUBJECT}"] == 60_000

    @pytest.mark.asyncio
    async def test_corrupt_value_is_removed(self, redis_store, fake_redis):
        fake_redis.data[f"runstate:{SUBJECT}"] = "not json"
        assert await redis_store.load_state(SUBJECT) is None
        assert f"runstate:{SUBJECT}" not in fake_redis.data

    @pytest.mark.asyncio
    async def test_load_failure_reads_as_none(self, clock):
        store = RedisRunStateStore(FakeRedis(fail=True), clock=clock)
        assert await store.load_state(SUBJECT) is None

    @pytest.mark.asyncio
    async def test_write_failures_raise(self, clock):
        store = RedisRunStateStore(FakeRedis(fail=True), clock=clock)
        with pytest.raises(PersistenceFailureError):
            await store.init()
        with pytest.raises(PersistenceFailureError):
            await store.save_state(SUBJECT, "state")
        with pytest.raises(PersistenceFailureError):
            await store.delete_state(SUBJECT)

    @pytest.mark.asyncio
    async def test_cleanup_ignores_other_prefixes(self, redis_store, fake_redis, clock):
        fake_redis.data["other:key"] = "untouched"
        await redis_store.save_state(SUBJECT, "state")
        clock.advance(60_001)
        assert await redis_store.cleanup_old_states() == 1
        assert fake_redis.data == {"other:key": "untouched"}

    @pytest.mark.asyncio
    async def test_close(self, redis_store, fake_redis):
        await redis_store.close()
        assert fake_redis.closed is True


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_len_counts_records(self, memory_store):
        await memory_store.save_state("a", "1")
        await memory_store.save_state("b", "2")
        assert len(memory_store) == 2


class TestStoreRegistry:
    def test_all_adapters_registered(self):
        assert set(STORE_FACTORIES) == {"file", "redis", "memory"}

    def test_create_memory_store(self):
        config = replace(PersistenceConfig(), adapter="memory", max_age_ms=1234)
        store = create_run_state_store(config)
        assert isinstance(store, InMemoryRunStateStore)
        assert store.max_age_ms == 1234

    def test_create_file_store(self, tmp_path):
        config = replace(PersistenceConfig(), adapter="file", data_dir=str(tmp_path))
        store = create_run_state_store(config)
        assert isinstance(store, FileRunStateStore)
        assert store.data_dir == tmp_path

    def test_create_redis_store(self):
        config = replace(PersistenceConfig(), adapter="redis", redis_url="redis://localhost:6399/0")
        assert isinstance(create_run_state_store(config), RedisRunStateStore)

    def test_unknown_adapter_raises(self):
        config = replace(PersistenceConfig(), adapter="dynamo")
        with pytest.raises(UnknownStrategyError, match="not registered"):
            create_run_state_store(config)

    def test_unknown_strategy_is_a_key_error(self):
        with pytest.raises(KeyError):
            create_run_state_store(replace(PersistenceConfig(), adapter="dynamo"))
