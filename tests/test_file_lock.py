from __future__ import annotations

import os
import sys
import threading
import time
from pathlib import Path

import pytest

# Garante que o pacote dashboard seja importável durante os testes locais
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dashboard.domain.errors import StorageUnavailableError  # noqa: E402
from dashboard.repositories import file_lock  # noqa: E402
from dashboard.repositories.file_lock import FileLock  # noqa: E402


def test_lock_writes_pid_and_releases(tmp_path):
    path = tmp_path / "clients.json.lock"
    with FileLock(path) as lock:
        assert lock.held
        assert path.read_text() == str(os.getpid())
    assert not path.exists()
    assert not lock.held


def test_busy_lock_times_out_with_backoff(tmp_path, monkeypatch):
    path = tmp_path / "clients.json.lock"
    path.write_text("999999")
    delays: list[float] = []
    monkeypatch.setattr(file_lock.time, "sleep", delays.append)

    lock = FileLock(path, retries=5, base_delay=0.1, max_factor=8, stale_after=60, jitter=0)
    with pytest.raises(StorageUnavailableError):
        lock.acquire()

    assert delays == pytest.approx([0.1, 0.2, 0.4, 0.8, 0.8])
    # o lock de outro processo permanece intacto
    assert path.read_text() == "999999"


def test_stale_lock_is_removed(tmp_path):
    path = tmp_path / "clients.json.lock"
    path.write_text("12345")
    old = time.time() - 30
    os.utime(path, (old, old))

    with FileLock(path, retries=2, stale_after=5):
        assert path.read_text() == str(os.getpid())
    assert not path.exists()


def test_release_tolerates_missing_marker(tmp_path):
    path = tmp_path / "clients.json.lock"
    lock = FileLock(path)
    lock.acquire()
    path.unlink()
    lock.release()
    assert not lock.held


def test_lock_serializes_threads(tmp_path):
    path = tmp_path / "counter.lock"
    counter = tmp_path / "counter.txt"
    counter.write_text("0")

    def bump():
        for _ in range(5):
            with FileLock(path, retries=500, base_delay=0.001, max_factor=4):
                value = int(counter.read_text())
                time.sleep(0.001)
                counter.write_text(str(value + 1))

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert counter.read_text() == "20"


def test_lock_in_missing_directory_is_storage_unavailable(tmp_path):
    lock = FileLock(tmp_path / "missing" / "clients.json.lock", retries=2)
    with pytest.raises(StorageUnavailableError):
        lock.acquire()
    assert not lock.held


def test_two_writers_recovering_same_stale_lock_never_both_hold_it(tmp_path, monkeypatch):
    path = tmp_path / "clients.json.lock"
    path.write_text("12345")
    old = time.time() - 30
    os.utime(path, (old, old))
    monkeypatch.setattr(file_lock.time, "sleep", lambda _: None)

    first = FileLock(path, retries=3, stale_after=5, jitter=0)
    second = FileLock(path, retries=3, stale_after=5, jitter=0)

    # o segundo escritor quebra o lock e o adquire logo depois que o
    # primeiro julgou o marcador antigo como stale
    original_stat = Path.stat
    interleaved: list[bool] = []

    def stat_then_second_writer(self, *args, **kwargs):
        result = original_stat(self, *args, **kwargs)
        if self == path and not interleaved:
            interleaved.append(True)
            second.acquire()
        return result

    monkeypatch.setattr(Path, "stat", stat_then_second_writer)
    with pytest.raises(StorageUnavailableError):
        first.acquire()

    assert interleaved == [True]
    assert second.held
    assert not first.held
    assert path.exists()
    assert not first.break_path.exists()

    second.release()
    assert not path.exists()


def test_leftover_break_marker_does_not_block_recovery(tmp_path):
    path = tmp_path / "clients.json.lock"
    path.write_text("12345")
    lock = FileLock(path, retries=5, base_delay=0.001, stale_after=5, jitter=0)
    lock.break_path.write_text("")
    old = time.time() - 30
    os.utime(path, (old, old))
    os.utime(lock.break_path, (old, old))

    with lock:
        assert path.read_text() == str(os.getpid())
    assert not lock.break_path.exists()
