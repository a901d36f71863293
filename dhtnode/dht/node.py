"""
DHT Node - Маршрутизация запросов и присоединение к сети
========================================================

[ROUTER] Решение "храню сам или пересылаю":
- PUT: ближайший пир к ключу (self участвует) -> если это мы или
  таблица пуста, сохраняем локально; иначе пересылаем одному пиру
- GET: сначала локальное хранилище (local-first read), затем то же
  решение, что и для PUT; если ближайшие мы - "не найдено"

[SINGLE HOP] Пересылка ровно на один шаг: пир отвечает тем, что
даёт его собственное решение. Итеративного lookup нет.

[JOIN] Присоединение через bootstrap (один раз, best-effort):
1. PING bootstrap -> добавить его в таблицу (при ошибке - стоп)
2. Получить /peers bootstrap и слить (кроме себя)
3. /register - сообщить о себе
4. /find_node для своего ID и слить результат

[OWNERSHIP] RoutingTable, SnapshotStore и NameMapper создаются один раз
на узел и передаются по ссылке; глобального состояния нет.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from ..errors import BadInput, NameNotFound, RPCError
from .identity import derive_node_id, advertised_address, key_from_name
from .protocol import (
    DHTProtocol,
    GetResponse,
    PutRequest,
    PutResponse,
    RelayedResponse,
)
from .routing import Peer, RoutingTable
from .storage import BaseStore, NameMapper

logger = logging.getLogger(__name__)


# Сколько пиров возвращает /find_node
FIND_NODE_COUNT = 3


@dataclass
class JoinResult:
    """Итог протокола присоединения."""

    bootstrap: Optional[Peer] = None
    merged_peers: int = 0
    announced: bool = False
    lookup_done: bool = False
    found_peers: int = 0

    @property
    def joined(self) -> bool:
        """Хотя бы bootstrap попал в таблицу."""
        return self.bootstrap is not None


class DHTNode:
    """
    Один узел DHT.

    [USAGE]
    ```python
    node = DHTNode(":8080", store=SnapshotStore(path), names=NameMapper(path2))
    await node.join("127.0.0.1:8000")

    result = await node.put(PutRequest(name="doc1", value="aGVsbG8="))
    result = await node.get(name="doc1")
    ```

    put() и get() возвращают либо локальный ответ (PutResponse /
    GetResponse), либо RelayedResponse - ответ пира без изменений.
    """

    def __init__(
        self,
        listen_address: str,
        store: BaseStore,
        names: NameMapper,
        protocol: Optional[DHTProtocol] = None,
        advertise: str = "",
        find_node_count: int = FIND_NODE_COUNT,
    ):
        """
        Args:
            listen_address: Адрес, как он сконфигурирован (из него выводится NodeID)
            store: Локальное хранилище значений
            names: Отображение имя -> ключ
            protocol: RPC клиент (по умолчанию DHTProtocol с таймаутом 3с)
            advertise: Адрес для пиров (по умолчанию выводится из listen_address)
            find_node_count: Размер ответа /find_node
        """
        self.listen_address = listen_address
        self.node_id = derive_node_id(listen_address)
        self.address = advertise or advertised_address(listen_address)
        self.store = store
        self.names = names
        self.protocol = protocol or DHTProtocol()
        self.find_node_count = find_node_count

        self.routing_table = RoutingTable(self.peer)

        logger.info(f"[DHT] Node created: {self.node_id} at {self.address}")

    @property
    def peer(self) -> Peer:
        """Запись этого узла."""
        return Peer(node_id=self.node_id, address=self.address)

    async def close(self) -> None:
        await self.protocol.close()

    # =========================================================================
    # Peer management (/ping, /peers, /register, /find_node)
    # =========================================================================

    def peers(self) -> List[Peer]:
        return self.routing_table.all()

    def register(self, peer: Peer) -> bool:
        """Принять анонс пира. Неполная запись игнорируется."""
        logger.info(f"[DHT] Register request from {peer.node_id} at {peer.address}")
        added = self.routing_table.add(peer)
        self.routing_table.log_snapshot("/register END")
        return added

    def find_node(self, target: str) -> List[Peer]:
        """Ближайшие к target пиры, исключая себя."""
        closest = self.routing_table.closest(target, self.find_node_count, exclude=self.node_id)
        logger.debug(f"[DHT] /find_node for target {target}: returning {len(closest)} peers")
        return closest

    def owner_of(self, key: str) -> Optional[Peer]:
        """
        Кто хранит ключ: None если мы, иначе ближайший пир.

        Себя не исключаем: если мы ближе всех (или таблица пуста),
        ключ принадлежит нам.
        """
        closest = self.routing_table.closest(key, 1)
        if not closest or closest[0].node_id == self.node_id:
            return None
        return closest[0]

    # =========================================================================
    # PUT / GET
    # =========================================================================

    async def put(self, request: PutRequest) -> Union[PutResponse, RelayedResponse]:
        """
        Сохранить значение в DHT (локально или у ближайшего пира).

        Raises:
            BadInput: нет ни key, ни name, или value не base64
            PersistenceError: локальная запись на диск не удалась
            ForwardFailure: пир недоступен
        """
        value = request.decode_value()

        key = request.key
        if not key:
            if not request.name:
                raise BadInput("must provide 'key' or 'name'")
            key = key_from_name(request.name)
            await asyncio.to_thread(self.names.set, request.name, key)

        owner = self.owner_of(key)
        if owner is None:
            logger.info(f"[DHT] Storing key {key} locally (self is closest)")
            await asyncio.to_thread(self.store.put, key, value)
            return PutResponse(key=key)

        logger.info(f"[DHT] Forwarding PUT for key {key} to peer {owner.node_id} at {owner.address}")
        return await self.protocol.forward_put(owner, request.to_dict())

    async def get(self, key: str = "", name: str = "") -> Union[GetResponse, RelayedResponse]:
        """
        Получить значение (local-first, затем один шаг пересылки).

        Raises:
            BadInput: нет ни key, ни name
            NameNotFound: имя неизвестно
            ForwardFailure: пир недоступен
        """
        if not key and name:
            key, found = await asyncio.to_thread(self.names.get, name)
            if not found:
                raise NameNotFound(name)
        if not key:
            raise BadInput("must provide 'key' or 'name'")

        value, found = await asyncio.to_thread(self.store.get, key)
        if found:
            logger.info(f"[DHT] GET key {key} found locally")
            return GetResponse(key=key, value=value, found=True)

        owner = self.owner_of(key)
        if owner is None:
            logger.info(f"[DHT] GET key {key} not found locally and self is closest")
            return GetResponse(key=key, found=False)

        logger.info(f"[DHT] Forwarding GET for key {key} to peer {owner.node_id} at {owner.address}")
        return await self.protocol.forward_get(owner, key)

    # =========================================================================
    # Join
    # =========================================================================

    async def join(self, bootstrap_address: str) -> JoinResult:
        """
        Присоединиться к сети через bootstrap узел.

        Ошибки шагов логируются и не выходят наружу: узел продолжает
        работать с той таблицей, которую успел заполнить.
        """
        result = JoinResult()
        logger.info(f"[JOIN] Attempting to join network via bootstrap node at {bootstrap_address}")
        self.routing_table.log_snapshot("joinNetwork START")

        # 1. PING - без идентичности bootstrap дальше идти бессмысленно
        try:
            bootstrap = await self.protocol.ping(bootstrap_address)
        except RPCError as e:
            logger.warning(f"[JOIN] Failed to ping bootstrap node: {e}")
            return result
        self.routing_table.add(bootstrap)
        result.bootstrap = bootstrap
        logger.info(f"[JOIN] Added bootstrap peer: {bootstrap.node_id} at {bootstrap.address}")

        # 2. Список пиров bootstrap
        try:
            peers = await self.protocol.peers(bootstrap_address)
        except RPCError as e:
            logger.warning(f"[JOIN] Failed to fetch peers from bootstrap: {e}")
        else:
            logger.info(f"[JOIN] Fetched {len(peers)} peers from bootstrap node")
            result.merged_peers = self._merge(peers)
            logger.info(f"[JOIN] Merged {result.merged_peers} peers from bootstrap")

        # 3. Анонс себя
        logger.info("[JOIN] Announcing self to bootstrap node via /register...")
        self.routing_table.log_snapshot("joinNetwork BEFORE REGISTER")
        try:
            status = await self.protocol.register(bootstrap_address, self.peer)
        except RPCError as e:
            logger.warning(f"[JOIN] Failed to announce self to bootstrap: {e}")
        else:
            result.announced = status == 200
            logger.info(f"[JOIN] Announced self to bootstrap node at {bootstrap_address} (status {status})")

        # 4. Lookup своего ID
        logger.info(f"[JOIN] Performing lookup for own node ID: {self.node_id}")
        try:
            found = await self.protocol.find_node(bootstrap_address, self.node_id)
        except RPCError as e:
            logger.warning(f"[JOIN] Failed to call /find_node: {e}")
        else:
            logger.info(f"[JOIN] /find_node returned {len(found)} peers")
            result.lookup_done = True
            result.found_peers = self._merge(found)
            self.routing_table.log_snapshot("joinNetwork AFTER FIND_NODE")

        logger.info(f"[JOIN] Discovery complete: {len(self.routing_table)} peers in routing table")
        return result

    def _merge(self, peers: List[Peer]) -> int:
        return self.routing_table.add_many(peers, exclude_id=self.node_id, exclude_address=self.address)
