"""
Routing Table - Таблица известных пиров
=======================================

[ROUTING] Плоская таблица node_id -> Peer:
- Ключи уникальны, порядок перечисления не гарантируется
- Таблица создаётся с одной записью (сам узел)
- Растёт через add() от протокола присоединения и /register
- Никогда не очищается (нет eviction, нет TTL)

[XOR] Метрика расстояния:
- Оба ID декодируются из hex
- XOR побайтно по первым min(len_a, len_b, 8) байтам
- Свёртка в беззнаковое 64-битное целое (big-endian)
- XOR(a, a) = 0, XOR(a, b) = XOR(b, a)

[LIMITATION] Байты за пределами первых 8 не учитываются: 40-символьный
ключ сравнивается с 16-символьным NodeID только по префиксу.
"""

import logging
import string
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from ..utils.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)


# Сколько байт ID участвуют в метрике
DISTANCE_BYTES = 8

_HEX_DIGITS = frozenset(string.hexdigits)


@dataclass(frozen=True)
class Peer:
    """
    Внешний узел, доступный по сети.

    Идентичность в таблице определяется только node_id;
    address может меняться при повторной регистрации (last write wins).
    """

    node_id: str
    address: str

    def to_dict(self) -> Dict[str, str]:
        """Сериализация в JSON-совместимый словарь."""
        return {"node_id": self.node_id, "address": self.address}

    @classmethod
    def from_dict(cls, data: Any) -> "Peer":
        """
        Десериализация из словаря.

        Отсутствующие поля становятся пустыми строками (такую запись
        RoutingTable.add молча проигнорирует).

        Raises:
            ValueError: если data не объект или поля не строки
        """
        if not isinstance(data, dict):
            raise ValueError(f"peer record must be an object, got {type(data).__name__}")
        node_id = data.get("node_id", "")
        address = data.get("address", "")
        if not isinstance(node_id, str) or not isinstance(address, str):
            raise ValueError("peer node_id and address must be strings")
        return cls(node_id=node_id, address=address)


def _decode_prefix(hex_id: str) -> bytes:
    """
    Декодировать самый длинный корректный hex-префикс из целых байт.

    Некорректный хвост отбрасывается, а не вызывает ошибку.
    """
    out = bytearray()
    for i in range(0, len(hex_id) - 1, 2):
        pair = hex_id[i:i + 2]
        if pair[0] not in _HEX_DIGITS or pair[1] not in _HEX_DIGITS:
            break
        out.append(int(pair, 16))
        if len(out) == DISTANCE_BYTES:
            break
    return bytes(out)


def xor_distance(a: str, b: str) -> int:
    """
    Вычислить XOR-расстояние между двумя hex ID.

    Args:
        a: Первый ID (NodeID или ключ)
        b: Второй ID

    Returns:
        Беззнаковое целое < 2**64; меньше = ближе
    """
    ba = _decode_prefix(a)
    bb = _decode_prefix(b)
    dist = 0
    for x, y in zip(ba, bb):
        dist = (dist << 8) | (x ^ y)
    return dist


class RoutingTable:
    """
    Конкурентная таблица маршрутизации.

    [CONCURRENCY] Одна блокировка на всю таблицу:
    - add() - эксклюзивный режим
    - all(), closest() и прочие чтения - разделяемый режим
    Блокировка никогда не удерживается во время сетевого вызова:
    наружу отдаются только копии.
    """

    def __init__(self, local: Optional[Peer] = None):
        """
        Args:
            local: Запись самого узла (если задана, сразу добавляется в таблицу)
        """
        self._peers: Dict[str, Peer] = {}
        self._lock = ReadWriteLock()
        if local is not None:
            self.add(local)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._peers)

    def __contains__(self, node_id: str) -> bool:
        with self._lock.read_locked():
            return node_id in self._peers

    def get(self, node_id: str) -> Optional[Peer]:
        """Получить пира по ID."""
        with self._lock.read_locked():
            return self._peers.get(node_id)

    def add(self, peer: Peer) -> bool:
        """
        Добавить или перезаписать пира по node_id.

        Пустой node_id или address - no-op.

        Returns:
            True если запись была добавлена или обновлена
        """
        if not peer.node_id or not peer.address:
            logger.debug(f"[DHT] Ignoring incomplete peer record: {peer}")
            return False

        with self._lock.write_locked():
            known = peer.node_id in self._peers
            self._peers[peer.node_id] = peer

        if known:
            logger.debug(f"[DHT] Peer already known: {peer.node_id} at {peer.address}")
        else:
            logger.info(f"[DHT] Discovered new peer: {peer.node_id} at {peer.address}")
        return True

    def add_many(self, peers: Iterable[Peer], exclude_id: str = "", exclude_address: str = "") -> int:
        """
        Добавить несколько пиров, пропуская совпадающих с собой.

        Запись пропускается, если совпадает node_id ИЛИ address.

        Returns:
            Количество принятых записей
        """
        added = 0
        for peer in peers:
            if exclude_id and peer.node_id == exclude_id:
                continue
            if exclude_address and peer.address == exclude_address:
                continue
            if self.add(peer):
                added += 1
        return added

    def all(self) -> List[Peer]:
        """Снапшот всех записей. Порядок не определён."""
        with self._lock.read_locked():
            return list(self._peers.values())

    def closest(self, target: str, k: int, exclude: str = "") -> List[Peer]:
        """
        Найти до k пиров, ближайших к target по XOR.

        Args:
            target: Целевой ID (NodeID или ключ)
            k: Максимальное количество результатов
            exclude: node_id, который нужно пропустить ("" - никого)

        Returns:
            Пиры по возрастанию расстояния; при равенстве порядок произвольный
        """
        if k <= 0:
            return []

        with self._lock.read_locked():
            candidates = [p for p in self._peers.values() if p.node_id != exclude]

        candidates.sort(key=lambda p: xor_distance(p.node_id, target))
        return candidates[:k]

    def log_snapshot(self, context: str) -> None:
        """Записать текущее содержимое таблицы в лог (DEBUG)."""
        if not logger.isEnabledFor(logging.DEBUG):
            return
        peers = self.all()
        logger.debug(f"[{context}] Current routing table ({len(peers)} peers):")
        for p in peers:
            logger.debug(f"  Peer: {p.node_id} at {p.address}")
