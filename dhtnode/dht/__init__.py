"""
DHT Module
==========

Маршрутизация и хранение узла:
- Peer, RoutingTable, xor_distance: таблица пиров с XOR-метрикой
- SnapshotStore, NameMapper: локальное хранилище с полным снапшотом
- DHTProtocol: исходящие RPC и одношаговая пересылка
- DHTNode: решение PUT/GET и протокол присоединения

[LIMITATION] Намеренно без k-buckets, итеративного lookup,
репликации и вытеснения пиров.
"""

from .identity import (
    derive_node_id,
    key_from_name,
    key_from_content,
    advertised_address,
)

from .routing import (
    Peer,
    RoutingTable,
    xor_distance,
)

from .storage import (
    BaseStore,
    SnapshotStore,
    NameMapper,
)

from .protocol import (
    DHTProtocol,
    PutRequest,
    PutResponse,
    GetResponse,
    RelayedResponse,
)

from .node import DHTNode, JoinResult

__all__ = [
    # Identity
    "derive_node_id",
    "key_from_name",
    "key_from_content",
    "advertised_address",
    # Routing
    "Peer",
    "RoutingTable",
    "xor_distance",
    # Storage
    "BaseStore",
    "SnapshotStore",
    "NameMapper",
    # Protocol
    "DHTProtocol",
    "PutRequest",
    "PutResponse",
    "GetResponse",
    "RelayedResponse",
    # Node
    "DHTNode",
    "JoinResult",
]
