"""
Node Runner - запуск узла из командной строки
=============================================

Использование:
    dhtnode [LISTEN] [--bootstrap HOST:PORT] [--data-dir DIR]

Примеры:
    # Запуск первого узла (bootstrap)
    dhtnode :8000

    # Подключение к существующему узлу
    dhtnode :8001 --bootstrap 127.0.0.1:8000

[STARTUP] Порядок:
1. NodeID из адреса прослушивания, запись себя в таблицу
2. Загрузка снапшотов (ошибка загрузки не фатальна)
3. Присоединение через bootstrap (если задан) - до начала обслуживания
4. HTTP сервер до SIGINT/SIGTERM
"""

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import suppress
from typing import List, Optional, Tuple

from aiohttp import web
from dotenv import load_dotenv

# .env должен быть загружен до чтения конфигурации из окружения
load_dotenv()

from .api import create_app  # noqa: E402
from .config import Config  # noqa: E402
from .dht.identity import derive_node_id  # noqa: E402
from .dht.node import DHTNode  # noqa: E402
from .dht.protocol import DHTProtocol  # noqa: E402
from .dht.storage import NameMapper, SnapshotStore  # noqa: E402
from .errors import PersistenceError  # noqa: E402
from .logger import setup_logging  # noqa: E402

logger = logging.getLogger(__name__)


def split_host_port(address: str) -> Tuple[Optional[str], int]:
    """
    Разобрать "host:port" или ":port".

    Пустой host означает все интерфейсы (None для aiohttp).

    Raises:
        ValueError: нет порта или он не число
    """
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid address {address!r}: expected HOST:PORT or :PORT")
    return (host or None), int(port)


def build_node(cfg: Config) -> DHTNode:
    """Собрать узел по конфигурации и загрузить снапшоты с диска."""
    listen = cfg.node.listen_address
    node_id = derive_node_id(listen)
    node = DHTNode(
        listen,
        store=SnapshotStore(cfg.storage.store_path(node_id)),
        names=NameMapper(cfg.storage.namemap_path(node_id)),
        protocol=DHTProtocol(timeout=cfg.network.rpc_timeout),
        advertise=cfg.node.advertise_address,
        find_node_count=cfg.network.find_node_count,
    )

    for snapshot in (node.store, node.names):
        try:
            snapshot.load()
        except PersistenceError as e:
            logger.warning(f"[STORE] No existing snapshot loaded: {e}")
    return node


async def serve(cfg: Config, stop: Optional[asyncio.Event] = None) -> None:
    """Запустить узел и обслуживать запросы до события stop."""
    host, port = split_host_port(cfg.node.listen_address)
    node = build_node(cfg)
    print(f"Node ID: {node.node_id}", flush=True)

    if cfg.node.bootstrap:
        result = await node.join(cfg.node.bootstrap)
        if not result.joined:
            logger.warning("[MAIN] Bootstrap unreachable, serving with local table only")

    runner = web.AppRunner(create_app(node))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"[MAIN] Listening on {cfg.node.listen_address}...")

    if stop is None:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        logger.info("[MAIN] Shutting down")
        await runner.cleanup()
        logger.info("[MAIN] Shutdown complete")


def parse_args(argv: Optional[List[str]] = None, cfg: Optional[Config] = None) -> Config:
    """Собрать конфигурацию из аргументов поверх окружения."""
    base = cfg or Config()
    parser = argparse.ArgumentParser(
        prog="dhtnode",
        description="Minimal Kademlia-style DHT node",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start as bootstrap node
  dhtnode :8000

  # Connect to existing network
  dhtnode :8001 --bootstrap 127.0.0.1:8000
""",
    )
    parser.add_argument(
        "listen",
        nargs="?",
        default=base.node.listen_address,
        help=f"Address to listen on (default: {base.node.listen_address})",
    )
    parser.add_argument(
        "--bootstrap", "-b",
        type=str,
        default=base.node.bootstrap,
        help="Bootstrap node address (host:port)",
    )
    parser.add_argument(
        "--advertise", "-a",
        type=str,
        default=base.node.advertise_address,
        help="Address announced to peers (default: derived from listen address)",
    )
    parser.add_argument(
        "--data-dir", "-d",
        type=str,
        default=base.storage.data_dir,
        help=f"Directory for store/namemap snapshots (default: {base.storage.data_dir})",
    )
    parser.add_argument(
        "--timeout", "-t",
        type=float,
        default=base.network.rpc_timeout,
        help=f"Outbound RPC timeout in seconds (default: {base.network.rpc_timeout})",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=base.logging.log_file,
        help="Also write logs to this file",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored log output",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)
    try:
        split_host_port(args.listen)
    except ValueError as e:
        parser.error(str(e))

    return base.copy_with(
        node={
            "listen_address": args.listen,
            "bootstrap": args.bootstrap,
            "advertise_address": args.advertise,
        },
        network={"rpc_timeout": args.timeout},
        storage={"data_dir": args.data_dir},
        logging={
            "level": "DEBUG" if args.verbose else base.logging.level,
            "color": base.logging.color and not args.no_color,
            "log_file": args.log_file,
        },
    )


def main(argv: Optional[List[str]] = None) -> None:
    cfg = parse_args(argv)
    setup_logging(cfg.logging.level, cfg.logging.color, cfg.logging.log_file or None)

    try:
        asyncio.run(serve(cfg))
    except KeyboardInterrupt:
        pass
    except OSError as e:
        logger.error(f"[MAIN] Cannot listen on {cfg.node.listen_address}: {e}")
        sys.exit(1)
