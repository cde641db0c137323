# tests/test_locks.py
import threading
import time

from deskledger.utils.locks import ReadWriteLock


def test_writer_can_read_and_reenter():
    lock = ReadWriteLock()
    with lock.write():
        with lock.read():
            pass
        with lock.write():
            pass


def test_reader_waits_for_writer():
    lock = ReadWriteLock()
    events = []

    def reader():
        with lock.read():
            events.append("read")

    with lock.write():
        t = threading.Thread(target=reader)
        t.start()
        time.sleep(0.05)
        events.append("write done")
    t.join(timeout=2)

    assert events == ["write done", "read"]


def test_writer_waits_for_readers():
    lock = ReadWriteLock()
    events = []

    def writer():
        with lock.write():
            events.append("write")

    with lock.read():
        t = threading.Thread(target=writer)
        t.start()
        time.sleep(0.05)
        events.append("read done")
    t.join(timeout=2)

    assert events == ["read done", "write"]
