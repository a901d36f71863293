"""
Node Configuration
==================
Централизованная конфигурация узла.

Значения по умолчанию можно переопределить переменными окружения
(.env загружается раннером), а их - аргументами командной строки.
"""

from dataclasses import dataclass, field, replace
from typing import Any

import os


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


# ============================================================================
# Environment overrides
# ============================================================================

LISTEN_ADDRESS: str = os.getenv("DHT_LISTEN", ":8080").strip() or ":8080"
BOOTSTRAP: str = os.getenv("DHT_BOOTSTRAP", "").strip()
ADVERTISE_ADDRESS: str = os.getenv("DHT_ADVERTISE", "").strip()
DATA_DIR: str = os.getenv("DHT_DATA_DIR", ".").strip() or "."
RPC_TIMEOUT: float = _env_float("DHT_RPC_TIMEOUT", 3.0)
LOG_LEVEL: str = os.getenv("DHT_LOG_LEVEL", "INFO").strip().upper() or "INFO"
LOG_COLOR: bool = _env_bool("DHT_LOG_COLOR", True)
LOG_FILE: str = os.getenv("DHT_LOG_FILE", "").strip()


@dataclass
class NodeConfig:
    """Идентичность и адреса узла."""

    # Адрес прослушивания; NodeID выводится из этой строки как есть
    listen_address: str = LISTEN_ADDRESS

    # Bootstrap узел host:port ("" - не присоединяться)
    bootstrap: str = BOOTSTRAP

    # Адрес, сообщаемый пирам ("" - 127.0.0.1:<port> для ":<port>")
    advertise_address: str = ADVERTISE_ADDRESS


@dataclass
class NetworkConfig:
    """Настройки RPC."""

    # Таймаут одного исходящего вызова (секунды)
    rpc_timeout: float = RPC_TIMEOUT

    # Сколько пиров возвращает /find_node
    find_node_count: int = 3


@dataclass
class StorageConfig:
    """Настройки снапшотов на диске."""

    data_dir: str = DATA_DIR
    store_prefix: str = "store"
    namemap_prefix: str = "namemap"

    def store_path(self, node_id: str) -> str:
        return os.path.join(self.data_dir, f"{self.store_prefix}_{node_id}.json")

    def namemap_path(self, node_id: str) -> str:
        return os.path.join(self.data_dir, f"{self.namemap_prefix}_{node_id}.json")


@dataclass
class LoggingConfig:
    level: str = LOG_LEVEL
    color: bool = LOG_COLOR
    log_file: str = LOG_FILE


@dataclass
class Config:
    """Главный конфигурационный класс."""

    node: NodeConfig = field(default_factory=NodeConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def copy_with(self, **sections: Any) -> "Config":
        """
        Копия с обновлёнными полями секций.

        ```python
        cfg = config.copy_with(node={"bootstrap": "127.0.0.1:8000"})
        ```
        """
        updated = {}
        for name, changes in sections.items():
            updated[name] = replace(getattr(self, name), **changes)
        return replace(self, **updated)


# Глобальный экземпляр конфигурации
config = Config()
