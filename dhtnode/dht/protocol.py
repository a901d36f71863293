"""
DHT Protocol - Исходящие RPC вызовы к пирам
===========================================

[MESSAGES] PutRequest / PutResponse / GetResponse - тела /put и /get
(значения передаются в base64).

[RPC] HTTP/JSON вызовы к другим узлам:
- ping:      GET  /ping                -> Peer
- peers:     GET  /peers               -> [Peer]
- register:  POST /register            -> статус
- find_node: GET  /find_node?target=ID -> [Peer]

[FORWARD] Одношаговая пересылка PUT/GET:
- Тело запроса пересылается без изменений
- Статус, Content-Type и тело ответа пира возвращаются байт-в-байт (RelayedResponse)
- Любая сетевая ошибка или таймаут -> ForwardFailure

[TIMEOUT] Каждый вызов ограничен rpc_timeout секундами: недоступный
пир не может подвесить обработку запроса навсегда.
"""

import asyncio
import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp
from aiohttp import hdrs

from ..errors import BadInput, ForwardFailure, RPCError
from .routing import Peer

logger = logging.getLogger(__name__)


DEFAULT_RPC_TIMEOUT = 3.0

# Ошибки, которые означают "сетевой путь сломан"
NETWORK_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


@dataclass
class PutRequest:
    """
    Тело POST /put.

    Должен быть задан key или name; value - base64.
    Пустой value означает пустое значение.
    """

    key: str = ""
    name: str = ""
    value: str = ""

    def decode_value(self) -> bytes:
        """
        Raises:
            BadInput: value не является корректным base64
        """
        try:
            return base64.b64decode(self.value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise BadInput(f"value is not valid base64: {e}") from e

    def to_dict(self) -> Dict[str, str]:
        """Сериализация для пересылки (пустые key/name опускаются)."""
        data = {}
        if self.key:
            data["key"] = self.key
        if self.name:
            data["name"] = self.name
        data["value"] = self.value
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "PutRequest":
        """
        Raises:
            BadInput: тело не объект или поля не строки
        """
        if not isinstance(data, dict):
            raise BadInput("request body must be a JSON object")
        fields = {}
        for name in ("key", "name", "value"):
            value = data.get(name, "")
            if value is None:
                value = ""
            if not isinstance(value, str):
                raise BadInput(f"field {name!r} must be a string")
            fields[name] = value
        return cls(**fields)


@dataclass
class PutResponse:
    """Подтверждение локального PUT."""

    key: str

    def to_dict(self) -> Dict[str, str]:
        return {"key": self.key}


@dataclass
class GetResponse:
    """
    Ответ GET.

    value присутствует в JSON только если found.
    """

    key: str
    value: Optional[bytes] = None
    found: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"key": self.key}
        if self.found and self.value is not None:
            data["value"] = base64.b64encode(self.value).decode("ascii")
        data["found"] = self.found
        return data


@dataclass
class RelayedResponse:
    """Ответ пира, который нужно вернуть вызывающему без изменений."""

    status: int
    body: bytes
    content_type: str = "application/json"


def peer_url(address: str, path: str) -> str:
    """URL эндпоинта пира."""
    return f"http://{address}{path}"


class DHTProtocol:
    """
    Клиент RPC поверх aiohttp.

    Одна ClientSession на узел; создаётся лениво внутри работающего
    event loop и закрывается в close().
    """

    def __init__(self, timeout: float = DEFAULT_RPC_TIMEOUT):
        """
        Args:
            timeout: Ограничение на один вызов (секунды)
        """
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # =========================================================================
    # Discovery RPC
    # =========================================================================

    async def ping(self, address: str) -> Peer:
        """Получить идентичность узла по адресу."""
        data = await self._get_json(address, "/ping")
        try:
            return Peer.from_dict(data)
        except ValueError as e:
            raise RPCError(f"bad /ping response from {address}: {e}") from e

    async def peers(self, address: str) -> List[Peer]:
        """Получить полную таблицу пиров узла."""
        data = await self._get_json(address, "/peers")
        return self._decode_peer_list(address, "/peers", data)

    async def register(self, address: str, peer: Peer) -> int:
        """
        Сообщить узлу о пире (обычно о себе).

        Returns:
            HTTP статус ответа
        """
        url = peer_url(address, "/register")
        try:
            async with self.session.post(url, json=peer.to_dict()) as resp:
                body = await resp.read()
                logger.debug(f"[RPC] /register at {address}: {resp.status} {body!r}")
                return resp.status
        except NETWORK_ERRORS as e:
            raise RPCError(f"POST {url} failed: {e!r}") from e

    async def find_node(self, address: str, target: str) -> List[Peer]:
        """Спросить узел о ближайших к target пирах."""
        data = await self._get_json(address, "/find_node", params={"target": target})
        return self._decode_peer_list(address, "/find_node", data)

    # =========================================================================
    # Forwarding
    # =========================================================================

    async def forward_put(self, peer: Peer, body: Dict[str, Any]) -> RelayedResponse:
        """Переслать PUT пиру без изменений."""
        url = peer_url(peer.address, "/put")
        try:
            async with self.session.post(url, data=json.dumps(body),
                                         headers={"Content-Type": "application/json"}) as resp:
                return RelayedResponse(
                    status=resp.status,
                    body=await resp.read(),
                    content_type=resp.headers.get(hdrs.CONTENT_TYPE, "application/json"),
                )
        except NETWORK_ERRORS as e:
            logger.warning(f"[DHT] Failed to forward PUT to {peer.address}: {e!r}")
            raise ForwardFailure(peer, e) from e

    async def forward_get(self, peer: Peer, key: str) -> RelayedResponse:
        """Переслать GET по ключу пиру без изменений."""
        url = peer_url(peer.address, "/get")
        try:
            async with self.session.get(url, params={"key": key}) as resp:
                return RelayedResponse(
                    status=resp.status,
                    body=await resp.read(),
                    content_type=resp.headers.get(hdrs.CONTENT_TYPE, "application/json"),
                )
        except NETWORK_ERRORS as e:
            logger.warning(f"[DHT] Failed to forward GET to {peer.address}: {e!r}")
            raise ForwardFailure(peer, e) from e

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _get_json(self, address: str, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        url = peer_url(address, path)
        try:
            async with self.session.get(url, params=params) as resp:
                if resp.status != 200:
                    raise RPCError(f"GET {url} returned {resp.status}")
                raw = await resp.read()
        except NETWORK_ERRORS as e:
            raise RPCError(f"GET {url} failed: {e!r}") from e
        try:
            return json.loads(raw)
        except ValueError as e:
            raise RPCError(f"GET {url} returned invalid JSON: {e}") from e

    @staticmethod
    def _decode_peer_list(address: str, path: str, data: Any) -> List[Peer]:
        if not isinstance(data, list):
            raise RPCError(f"{path} at {address} did not return a list")
        try:
            return [Peer.from_dict(item) for item in data]
        except ValueError as e:
            raise RPCError(f"bad {path} response from {address}: {e}") from e
