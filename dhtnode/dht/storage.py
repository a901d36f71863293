"""
DHT Storage - Локальное хранилище узла
======================================

[STORAGE] Пары key -> bytes:
- Ключ = hex-строка (NodeID-совместимая)
- Значение = произвольные байты (включая пустые и не-UTF8)
- Нет TTL и версий: повторный put перезаписывает значение

[PERSISTENCE] Полный снапшот:
- Весь словарь переписывается в один JSON файл после КАЖДОЙ мутации
- Значения хранятся в hex
- O(размер хранилища) на запись - осознанный выбор для небольших сетей

[INTERFACE] BaseStore (put/get/load/flush) отделяет логику маршрутизации
от бэкенда: append-log или транзакционное хранилище можно подключить,
не трогая DHTNode.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

from ..errors import PersistenceError
from ..utils.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)


PathLike = Union[str, Path]


class SnapshotFile:
    """
    JSON файл, который всегда переписывается целиком.

    Запись идёт во временный файл в том же каталоге и затем
    атомарно заменяет целевой (os.replace).
    """

    def __init__(self, path: PathLike):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> Dict[str, str]:
        """
        Прочитать снапшот.

        Returns:
            Словарь из файла; пустой словарь, если файла нет

        Raises:
            PersistenceError: файл повреждён или не читается
        """
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(str(self.path), e) from e
        if not isinstance(data, dict):
            raise PersistenceError(str(self.path), ValueError("snapshot is not a JSON object"))
        return data

    def write(self, data: Dict[str, str]) -> None:
        """
        Переписать снапшот целиком.

        Raises:
            PersistenceError: запись не удалась
        """
        tmp_name = None
        try:
            directory = self.path.parent
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(str(self.path), e) from e


class BaseStore(ABC):
    """
    Интерфейс локального хранилища.

    Реализации обязаны быть потокобезопасными.
    """

    @abstractmethod
    def put(self, key: str, value: bytes) -> None:
        """Сохранить значение (и сбросить на диск, если бэкенд персистентный)."""
        pass

    @abstractmethod
    def get(self, key: str) -> Tuple[Optional[bytes], bool]:
        """Получить значение: (value, found). Никогда не бросает исключений."""
        pass

    @abstractmethod
    def load(self) -> int:
        """Загрузить состояние со стабильного хранилища. Возвращает число ключей."""
        pass

    @abstractmethod
    def flush(self) -> None:
        """Записать текущее состояние на стабильное хранилище."""
        pass


class SnapshotStore(BaseStore):
    """
    Хранилище в памяти с синхронным полным снапшотом на диск.

    [CONCURRENCY] Одна блокировка чтения/записи покрывает словарь
    и запись на диск: put полностью сериализован относительно
    других put/get этого узла.

    [KNOWN ISSUE] Если запись на диск не удалась, изменение в памяти
    НЕ откатывается: put бросает PersistenceError, но последующий
    get вернёт новое значение.
    """

    def __init__(self, path: PathLike):
        """
        Args:
            path: Путь к JSON снапшоту (например, data/store_<node_id>.json)
        """
        self._snapshot = SnapshotFile(path)
        self._data: Dict[str, bytes] = {}
        self._lock = ReadWriteLock()

    @property
    def path(self) -> Path:
        return self._snapshot.path

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._data)

    def put(self, key: str, value: bytes) -> None:
        """
        Сохранить value под key и переписать снапшот.

        Raises:
            PersistenceError: снапшот не записан (значение в памяти остаётся)
        """
        with self._lock.write_locked():
            self._data[key] = bytes(value)
            self._flush_locked()
        logger.debug(f"[STORE] Stored {key} ({len(value)} bytes)")

    def get(self, key: str) -> Tuple[Optional[bytes], bool]:
        with self._lock.read_locked():
            value = self._data.get(key)
        return value, value is not None

    def load(self) -> int:
        """
        Загрузить снапшот с диска.

        Значения с некорректным hex пропускаются.

        Raises:
            PersistenceError: файл повреждён
        """
        raw = self._snapshot.read()
        loaded: Dict[str, bytes] = {}
        for key, encoded in raw.items():
            try:
                loaded[key] = bytes.fromhex(encoded)
            except (TypeError, ValueError):
                logger.warning(f"[STORE] Skipping corrupt value for key {key}")
        with self._lock.write_locked():
            self._data.update(loaded)
        logger.info(f"[STORE] Loaded {len(loaded)} keys from {self.path}")
        return len(loaded)

    def flush(self) -> None:
        with self._lock.write_locked():
            self._flush_locked()

    def snapshot(self) -> Dict[str, bytes]:
        """Копия содержимого хранилища."""
        with self._lock.read_locked():
            return dict(self._data)

    def _flush_locked(self) -> None:
        self._snapshot.write({k: v.hex() for k, v in self._data.items()})


class NameMapper:
    """
    Отображение человекочитаемого имени в ключ.

    [PERSISTENCE] Отдельный JSON снапшот (name -> key), переписывается
    целиком на каждый set(). Последний set() для имени побеждает.
    """

    def __init__(self, path: PathLike):
        self._snapshot = SnapshotFile(path)
        self._names: Dict[str, str] = {}
        self._lock = ReadWriteLock()

    @property
    def path(self) -> Path:
        return self._snapshot.path

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._names)

    def set(self, name: str, key: str) -> None:
        """
        Записать name -> key и переписать снапшот.

        Raises:
            PersistenceError: снапшот не записан (отображение в памяти остаётся)
        """
        with self._lock.write_locked():
            self._names[name] = key
            self._snapshot.write(dict(self._names))
        logger.debug(f"[STORE] Name {name!r} -> {key}")

    def get(self, name: str) -> Tuple[Optional[str], bool]:
        with self._lock.read_locked():
            key = self._names.get(name)
        return key, key is not None

    def load(self) -> int:
        raw = self._snapshot.read()
        loaded = {n: k for n, k in raw.items() if isinstance(k, str)}
        with self._lock.write_locked():
            self._names.update(loaded)
        logger.info(f"[STORE] Loaded {len(loaded)} names from {self.path}")
        return len(loaded)
