from authgate.config import Settings
from authgate.service.runtime import Runtime, _mask_url_password, get_runtime, reset_runtime_for_tests
from authgate.storage.memory import MemoryStore
from authgate.storage.postgres import PostgresStore
from authgate.storage.redis_cache import RedisCache


def test_memory_runtime_wiring():
    runtime = get_runtime()
    assert isinstance(runtime.store, MemoryStore)
    assert runtime.cache is None
    assert runtime.tokens.ledger is runtime.store
    assert runtime.challenges.store is runtime.store
    assert runtime.auth.directory is runtime.directory
    assert get_runtime() is runtime


def test_reset_builds_fresh_runtime():
    first = get_runtime()
    second = reset_runtime_for_tests()
    assert second is not first
    assert get_runtime() is second


def test_networked_backends_selected_without_memory_flag():
    settings = Settings(
        jwt_secret="x" * 40,
        use_memory_store=False,
        database_url="postgresql://user:pw@db.internal:5432/auth",
        redis_url="redis://:pw@cache.internal:6379/0",
    )
    runtime = Runtime(settings)
    try:
        assert isinstance(runtime.store, PostgresStore)
        assert isinstance(runtime.cache, RedisCache)
        assert runtime.tokens.ledger is runtime.cache
        assert runtime.challenges.store is runtime.cache
    finally:
        runtime.hasher.shutdown(wait=False)


def test_mask_url_password():
    assert _mask_url_password("redis://:secret@localhost:6379/0") == "redis://:***@localhost:6379/0"
    assert _mask_url_password("postgresql://user:secret@db:5432/x") == "postgresql://user:***@db:5432/x"
    assert _mask_url_password("redis://localhost:6379") == "redis://localhost:6379"
    assert _mask_url_password(None) is None


async def test_startup_prepares_unknown_email_hash():
    runtime = get_runtime()
    assert runtime.directory._dummy_hash is None
    await runtime.startup()
    assert runtime.directory._dummy_hash.startswith("$argon2id$")
