"""
DHT Client - работа с узлом из командной строки
===============================================

Использование:
    dhtnode-client [--node HOST:PORT] put [--name NAME | --key KEY] [FILE]
    dhtnode-client [--node HOST:PORT] get (--key KEY | --name NAME)
    dhtnode-client [--node HOST:PORT] peers

[CONTENT] Без --name и --key ключом становится SHA-1 содержимого
(контентная адресация). Без FILE содержимое читается из stdin.

[EXIT] Код 1 при любой ошибке или если значение не найдено.
"""

import argparse
import asyncio
import base64
import binascii
import logging
import sys
from typing import Any, Dict, List, Optional, Tuple

from .config import config
from .dht.identity import advertised_address, key_from_content
from .dht.protocol import DHTProtocol, NETWORK_ERRORS, PutRequest, peer_url
from .dht.routing import Peer
from .errors import DHTError, RPCError

logger = logging.getLogger(__name__)


class ClientError(DHTError):
    """Узел ответил ошибкой."""

    def __init__(self, status: int, body: str):
        super().__init__(f"node returned {status}: {body}")
        self.status = status
        self.body = body


class DHTClient:
    """
    Асинхронный клиент HTTP API узла.

    ```python
    async with DHTClient("127.0.0.1:8080") as client:
        key = await client.put(b"hello", name="doc1")
        value, found = await client.get(name="doc1")
    ```
    """

    def __init__(self, address: str, timeout: Optional[float] = None):
        self.address = advertised_address(address)
        self._rpc = DHTProtocol(timeout=timeout if timeout is not None else config.network.rpc_timeout)

    async def __aenter__(self) -> "DHTClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        await self._rpc.close()

    async def ping(self) -> Peer:
        return await self._rpc.ping(self.address)

    async def peers(self) -> List[Peer]:
        return await self._rpc.peers(self.address)

    async def put(self, value: bytes, key: str = "", name: str = "") -> str:
        """
        Сохранить значение.

        Returns:
            Ключ, под которым узел (или его пир) сохранил значение

        Raises:
            ClientError: узел вернул не 200
            RPCError: узел недоступен или ответ без ключа
        """
        request = PutRequest(key=key, name=name, value=base64.b64encode(value).decode("ascii"))
        data = await self._call("POST", "/put", json_body=request.to_dict())
        stored = data.get("key") if isinstance(data, dict) else None
        if not isinstance(stored, str):
            raise RPCError(f"node returned no key for PUT: {data!r}")
        return stored

    async def get(self, key: str = "", name: str = "") -> Tuple[Optional[bytes], bool]:
        """
        Получить значение.

        Returns:
            (value, found); неизвестное имя -> (None, False)
        """
        params = {"key": key} if key else {"name": name}
        try:
            data = await self._call("GET", "/get", params=params)
        except ClientError as e:
            if e.status == 404:
                return None, False
            raise
        if not isinstance(data, dict):
            raise RPCError(f"node returned a non-object GET reply: {data!r}")
        if not data.get("found"):
            return None, False
        try:
            return base64.b64decode(data.get("value", ""), validate=True), True
        except (binascii.Error, ValueError) as e:
            raise RPCError(f"node returned invalid base64 value: {e}") from e

    async def _call(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = peer_url(self.address, path)
        try:
            async with self._rpc.session.request(method, url, params=params, json=json_body) as resp:
                if resp.status != 200:
                    raise ClientError(resp.status, (await resp.text()).strip())
                return await resp.json(content_type=None)
        except NETWORK_ERRORS as e:
            raise RPCError(f"{method} {url} failed: {e!r}") from e
        except ValueError as e:
            raise RPCError(f"{method} {url} returned invalid JSON: {e}") from e


def read_content(path: Optional[str]) -> bytes:
    """Прочитать файл или stdin целиком."""
    if path:
        with open(path, "rb") as f:
            return f.read()
    return sys.stdin.buffer.read()


async def run_command(args: argparse.Namespace) -> int:
    async with DHTClient(args.node, timeout=args.timeout) as client:
        if args.command == "put":
            content = read_content(args.file)
            key = args.key
            if not key and not args.name:
                key = key_from_content(content)
            stored_key = await client.put(content, key=key, name=args.name)
            print(f"Stored. Key: {stored_key}")
            if args.name:
                print(f"Name: {args.name}")
            return 0

        if args.command == "get":
            value, found = await client.get(key=args.key or "", name=args.name or "")
            if not found:
                print(f"Not found: {args.key or args.name}", file=sys.stderr)
                return 1
            sys.stdout.buffer.write(value)
            sys.stdout.buffer.flush()
            return 0

        for peer in await client.peers():
            print(f"{peer.node_id}  {peer.address}")
        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dhtnode-client", description="Store and fetch content via a DHT node")
    parser.add_argument(
        "--node", "-n",
        type=str,
        default=config.node.listen_address,
        help=f"Node address (default: {config.node.listen_address})",
    )
    parser.add_argument(
        "--timeout", "-t",
        type=float,
        default=config.network.rpc_timeout,
        help="Request timeout in seconds",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    put = sub.add_parser("put", help="Store content")
    put_id = put.add_mutually_exclusive_group()
    put_id.add_argument("--name", default="", help="Human-readable name")
    put_id.add_argument("--key", default="", help="Explicit key")
    put.add_argument("file", nargs="?", help="File to store (default: stdin)")

    get = sub.add_parser("get", help="Fetch content")
    get_id = get.add_mutually_exclusive_group(required=True)
    get_id.add_argument("--name", help="Human-readable name")
    get_id.add_argument("--key", help="Key")

    sub.add_parser("peers", help="List the node's routing table")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
    try:
        code = asyncio.run(run_command(args))
    except (DHTError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    sys.exit(code)
