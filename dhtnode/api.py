"""
HTTP API - aiohttp приложение узла
==================================

[ENDPOINTS]
- GET  /ping                 -> {node_id, address}
- GET  /peers                -> [{node_id, address}, ...]
- POST /register             -> 200 / 400
- GET  /find_node?target=ID  -> до 3 ближайших пиров (кроме себя)
- POST /put                  -> {key} | ответ пира | 400 / 500 / 502
- GET  /get?key=..|name=..   -> {key, value?, found} | ответ пира | 400 / 404 / 502

[ERRORS] Исключения превращаются в статусы только в error_middleware:
обработчики просто бросают BadInput / NameNotFound / ForwardFailure /
PersistenceError.
"""

import json
import logging
from typing import Awaitable, Callable, Union

from aiohttp import hdrs, web

from .dht.node import DHTNode
from .dht.protocol import GetResponse, PutRequest, PutResponse, RelayedResponse
from .dht.routing import Peer
from .errors import BadInput, ForwardFailure, NameNotFound, PersistenceError

logger = logging.getLogger(__name__)


NODE_KEY = web.AppKey("node", DHTNode)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def request_logger(request: web.Request, handler: Handler) -> web.StreamResponse:
    logger.info(f"[HANDLER] {request.path} called: {request.method} {request.path_qs}")
    return await handler(request)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Отобразить таксономию ошибок в HTTP статусы."""
    try:
        return await handler(request)
    except BadInput as e:
        logger.info(f"[HANDLER] {request.path} bad input: {e}")
        return web.json_response({"error": str(e)}, status=400)
    except NameNotFound as e:
        logger.info(f"[HANDLER] {request.path} unknown name: {e.name!r}")
        return web.json_response({"error": str(e)}, status=404)
    except ForwardFailure as e:
        return web.json_response({"error": str(e)}, status=502)
    except PersistenceError as e:
        logger.error(f"[STORE] {e}")
        return web.json_response({"error": "persistence failure"}, status=500)


def _relay_or_json(result: Union[PutResponse, GetResponse, RelayedResponse]) -> web.Response:
    if isinstance(result, RelayedResponse):
        return web.Response(status=result.status, body=result.body, headers={hdrs.CONTENT_TYPE: result.content_type})
    return web.json_response(result.to_dict())


async def _read_json(request: web.Request):
    raw = await request.read()
    try:
        return json.loads(raw)
    except ValueError as e:
        raise BadInput(f"invalid JSON body: {e}") from e


async def ping(request: web.Request) -> web.Response:
    node = request.app[NODE_KEY]
    return web.json_response(node.peer.to_dict())


async def peers(request: web.Request) -> web.Response:
    node = request.app[NODE_KEY]
    return web.json_response([p.to_dict() for p in node.peers()])


async def register(request: web.Request) -> web.Response:
    node = request.app[NODE_KEY]
    data = await _read_json(request)
    try:
        peer = Peer.from_dict(data)
    except ValueError as e:
        raise BadInput(str(e)) from e
    node.register(peer)
    return web.Response(status=200)


async def find_node(request: web.Request) -> web.Response:
    node = request.app[NODE_KEY]
    target = request.query.get("target", "")
    if not target:
        raise BadInput("missing 'target' query parameter")
    return web.json_response([p.to_dict() for p in node.find_node(target)])


async def put(request: web.Request) -> web.Response:
    node = request.app[NODE_KEY]
    put_request = PutRequest.from_dict(await _read_json(request))
    return _relay_or_json(await node.put(put_request))


async def get(request: web.Request) -> web.Response:
    node = request.app[NODE_KEY]
    key = request.query.get("key", "")
    name = request.query.get("name", "")
    if not key and not name:
        raise BadInput("must provide 'key' or 'name'")
    return _relay_or_json(await node.get(key=key, name=name))


def create_app(node: DHTNode) -> web.Application:
    """
    Собрать aiohttp приложение для узла.

    При остановке приложения закрывается RPC сессия узла.
    """
    app = web.Application(middlewares=[request_logger, error_middleware])
    app[NODE_KEY] = node

    app.router.add_get("/ping", ping)
    app.router.add_get("/peers", peers)
    app.router.add_post("/register", register)
    app.router.add_get("/find_node", find_node)
    app.router.add_post("/put", put)
    app.router.add_get("/get", get)

    async def _close_node(app: web.Application) -> None:
        await app[NODE_KEY].close()

    app.on_cleanup.append(_close_node)
    return app
