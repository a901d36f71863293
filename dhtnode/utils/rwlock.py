"""
Read/Write Lock
===============

[CONCURRENCY] Блокировка "много читателей / один писатель":
- Читатели не блокируют друг друга
- Писатель получает эксклюзивный доступ
- Ожидающий писатель блокирует новых читателей (без голодания писателя)

Используется RoutingTable и хранилищами: операции синхронные, поэтому
блокировка построена на threading, как и в k-bucket таблице.
"""

import threading
from contextlib import contextmanager
from typing import Iterator


class ReadWriteLock:
    """Блокировка с разделяемым (read) и эксклюзивным (write) режимами."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        """Захватить блокировку в разделяемом режиме."""
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        """Захватить блокировку в эксклюзивном режиме."""
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
