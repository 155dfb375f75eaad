import threading
import time

import pytest

from imaging.cache import CacheLog, CacheStore
from imaging.errors import CacheWriteFailure

FRESH = "images/cache/cat_-_3c_-_aaa.jpg"
FOREVER = "images/cache/dog_-_abcdef_-_bbb.png"
ALWAYS = "images/cache/owl_-_0_-_ccc.jpg"


def meta(**extra):
    data = {"cache_dir": "images/cache", "source_path": "cat.jpg", "width": 40, "height": 30,
            "mime_type": "image/jpeg", "size": 3, "processing_time": 0.5, "vars": {"width": 40}}
    data.update(extra)
    return data


# ---- log ---------------------------------------------------------------- #
def test_update_creates_row_and_respects_force(store):
    log = store.log
    assert log.update(FRESH, meta())
    assert not log.update(FRESH, meta(width=99))
    assert log.get(FRESH).width == 40
    assert log.update(FRESH, meta(width=99), force=True)
    assert log.get(FRESH).width == 99
    assert log.get_vars(FRESH) == {"width": 40}


def test_record_hit_accumulates(store):
    log = store.log
    log.update(FRESH, meta())
    assert log.record_hit(FRESH)
    assert log.record_hit(FRESH)
    entry = log.get(FRESH)
    assert entry.count == 3
    assert entry.cumulative_size == 9
    assert entry.cumulative_processing_time == pytest.approx(1.5)
    assert not log.record_hit("images/cache/missing.jpg")


def test_entries_filter_by_prefix(store):
    store.log.update(FRESH, meta())
    store.log.update("other/x_-_3c_-_d.jpg", meta(cache_dir="other"))
    assert [e.path for e in store.log.entries("images/cache")] == [FRESH]
    assert len(store.log.entries()) == 2


# ---- freshness ---------------------------------------------------------- #
def test_duration_comes_from_the_filename(store):
    assert store.duration(FRESH) == 60
    assert store.duration(FOREVER) == -1
    assert store.duration(ALWAYS) == 0
    assert store.duration("images/cache/plain.jpg") == store.settings.cache_duration


def test_is_fresh(store):
    for path in (FRESH, FOREVER, ALWAYS):
        store.write(path, b"abc", meta())
    now = time.time()
    assert store.is_fresh(FRESH, now)
    assert not store.is_fresh(FRESH, now + 61)
    assert store.is_fresh(FOREVER, now + 10 ** 9)
    assert not store.is_fresh(ALWAYS, now)
    assert not store.is_fresh("images/cache/missing_-_3c_-_x.jpg", now)


# ---- writes ------------------------------------------------------------- #
def test_write_stores_file_and_log_row(store, storage):
    store.write(FRESH, b"abc", meta())
    assert storage.read(FRESH) == b"abc"
    assert store.log.get(FRESH).size == 3


class FailingStorage:
    def write(self, path, data):
        return False


class FailingLog(CacheLog):
    def update(self, path, metadata, force=False):
        return False


def test_storage_failure_raises(settings, session_factory):
    store = CacheStore(FailingStorage(), CacheLog(session_factory), settings)
    with pytest.raises(CacheWriteFailure):
        store.write(FRESH, b"abc", meta())


def test_log_failure_removes_the_file(settings, session_factory, storage):
    store = CacheStore(storage, FailingLog(session_factory), settings)
    with pytest.raises(CacheWriteFailure):
        store.write(FRESH, b"abc", meta())
    assert not storage.exists(FRESH)


def test_lock_is_per_key_and_released(store):
    with store.lock("a"):
        with store.lock("b"):
            assert set(store._locks) == {"a", "b"}
        assert set(store._locks) == {"a"}
    assert store._locks == {}


def test_lock_serialises_one_key(store):
    order = []
    entered = threading.Event()

    def second():
        entered.set()
        with store.lock("a"):
            order.append("second")

    with store.lock("a"):
        worker = threading.Thread(target=second)
        worker.start()
        entered.wait(1)
        time.sleep(0.05)
        order.append("first")
    worker.join(1)
    assert order == ["first", "second"]
    assert store._locks == {}


# ---- maintenance -------------------------------------------------------- #
def test_audit_removes_expired_and_relogs_unlogged(store, storage):
    store.write(FRESH, b"abc", meta())
    store.write(FOREVER, b"png", meta(mime_type="image/png"))
    storage.write("images/cache/lost_-_abcdef_-_eee.webp", b"webp")
    store.log.update("images/cache/gone_-_3c_-_fff.jpg", meta())

    removed = store.audit(now=time.time() + 120)

    assert removed == 1
    assert not storage.exists(FRESH)
    assert store.log.get(FRESH) is None
    assert storage.exists(FOREVER)
    relogged = store.log.get("images/cache/lost_-_abcdef_-_eee.webp")
    assert relogged.mime_type == "image/webp"
    assert relogged.size == 4
    assert store.log.get("images/cache/gone_-_3c_-_fff.jpg") is None


def test_clear_removes_everything_under_location(store, storage):
    store.write(FRESH, b"abc", meta())
    store.write(FOREVER, b"png", meta())
    store.write("elsewhere/keep_-_3c_-_g.jpg", b"x", meta(cache_dir="elsewhere"))

    assert store.clear() == 2
    assert store.log.entries("images/cache") == []
    assert storage.exists("elsewhere/keep_-_3c_-_g.jpg")
    assert store.clear("elsewhere") == 1
