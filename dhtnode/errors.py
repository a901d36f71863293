"""
Errors - Иерархия исключений узла
=================================

[ERRORS] Каждая ошибка отображается в отдельный HTTP статус
(см. dhtnode/api.py, error_middleware):
- BadInput         -> 400
- NameNotFound     -> 404
- PersistenceError -> 500
- ForwardFailure   -> 502

"Значение не найдено" - это нормальный результат (found=False),
а не исключение.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .dht.routing import Peer


class DHTError(Exception):
    """Базовая ошибка узла DHT."""
    pass


class BadInput(DHTError):
    """Некорректный или неполный запрос."""
    pass


class NameNotFound(DHTError):
    """Имя не зарегистрировано в NameMapper."""

    def __init__(self, name: str):
        super().__init__(f"unknown name: {name!r}")
        self.name = name


class PersistenceError(DHTError):
    """Не удалось записать или прочитать снапшот на диске."""

    def __init__(self, path: str, cause: Optional[BaseException] = None):
        super().__init__(f"persistence failed for {path}: {cause}")
        self.path = path
        self.cause = cause


class ForwardFailure(DHTError):
    """
    Одношаговый вызов к пиру не удался (отказ соединения, таймаут, DNS).

    Отличается от NotFound: вызывающий должен видеть, что сломался
    сетевой путь, а не то, что ключа нет.
    """

    def __init__(self, peer: "Peer", cause: Optional[BaseException] = None):
        super().__init__(f"forward to {peer.address} failed: {cause!r}")
        self.peer = peer
        self.cause = cause


class RPCError(DHTError):
    """Служебный вызов к пиру (ping, peers, register, find_node) не удался."""
    pass
