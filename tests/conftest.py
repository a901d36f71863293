"""
dhtnode Test Configuration
==========================

[QA] Central pytest configuration with fixtures for all test types:
- Unit tests: Isolated, no sockets, fast
- Integration tests: Real aiohttp nodes on localhost ports

[FIXTURES]
- temp_dir: Per-test temporary directory
- make_node: Build an in-process DHTNode with snapshots in temp_dir
- FakeProtocol: Scripted RPC client for router/join unit tests
- node_factory: Spawn N real nodes on localhost and tear them down

Usage:
    pytest tests/unit/          # Fast unit tests
    pytest tests/integration/   # Integration tests
"""

import shutil
import tempfile
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import unused_port

from dhtnode.api import create_app
from dhtnode.config import Config
from dhtnode.dht.node import DHTNode
from dhtnode.dht.protocol import DHTProtocol, RelayedResponse
from dhtnode.dht.routing import Peer
from dhtnode.dht.storage import NameMapper, SnapshotStore
from dhtnode.errors import RPCError
from dhtnode.runner import build_node


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests (real sockets)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on their path."""
    for item in items:
        if "/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# ============================================================================
# Logging Configuration
# ============================================================================

@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


# ============================================================================
# Temporary Directory Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp(prefix="dhtnode_test_"))
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


# ============================================================================
# In-process nodes
# ============================================================================

class FakeProtocol(DHTProtocol):
    """
    RPC client with scripted answers.

    Each attribute holds either a value to return or an exception to raise.
    Every call is recorded in `calls` as (method, args).
    """

    def __init__(self):
        super().__init__(timeout=0.1)
        self.calls: List[tuple] = []
        self.ping_result: Any = RPCError("ping not scripted")
        self.peers_result: Any = []
        self.register_result: Any = 200
        self.find_node_result: Any = []
        self.forward_result: Any = RelayedResponse(status=200, body=b'{"forwarded": true}')

    def _answer(self, value: Any) -> Any:
        if isinstance(value, BaseException):
            raise value
        return value

    async def ping(self, address: str) -> Peer:
        self.calls.append(("ping", (address,)))
        return self._answer(self.ping_result)

    async def peers(self, address: str) -> List[Peer]:
        self.calls.append(("peers", (address,)))
        return self._answer(self.peers_result)

    async def register(self, address: str, peer: Peer) -> int:
        self.calls.append(("register", (address, peer)))
        return self._answer(self.register_result)

    async def find_node(self, address: str, target: str) -> List[Peer]:
        self.calls.append(("find_node", (address, target)))
        return self._answer(self.find_node_result)

    async def forward_put(self, peer: Peer, body: Dict[str, Any]) -> RelayedResponse:
        self.calls.append(("forward_put", (peer, body)))
        return self._answer(self.forward_result)

    async def forward_get(self, peer: Peer, key: str) -> RelayedResponse:
        self.calls.append(("forward_get", (peer, key)))
        return self._answer(self.forward_result)

    def called(self, method: str) -> List[tuple]:
        return [args for name, args in self.calls if name == method]


@pytest.fixture
def fake_protocol() -> FakeProtocol:
    return FakeProtocol()


@pytest.fixture
def make_node(temp_dir: Path, fake_protocol: FakeProtocol) -> Callable[..., DHTNode]:
    """Factory for DHTNode instances backed by snapshots in temp_dir."""
    def _create(listen: str = "127.0.0.1:7000", protocol: Optional[DHTProtocol] = None) -> DHTNode:
        return DHTNode(
            listen,
            store=SnapshotStore(temp_dir / f"store_{listen.replace(':', '_')}.json"),
            names=NameMapper(temp_dir / f"namemap_{listen.replace(':', '_')}.json"),
            protocol=protocol or fake_protocol,
        )
    return _create


# ============================================================================
# Real nodes on localhost
# ============================================================================

@dataclass
class RunningNode:
    """A node served by aiohttp on a localhost port."""

    node: DHTNode
    runner: web.AppRunner

    @property
    def address(self) -> str:
        return self.node.address

    @property
    def url(self) -> str:
        return f"http://{self.node.address}"


class NodeFactory:
    """Spawn nodes through the same build path as the runner."""

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.nodes: List[RunningNode] = []

    async def create(self, bootstrap: str = "", timeout: float = 1.0) -> RunningNode:
        port = unused_port()
        cfg = Config().copy_with(
            node={"listen_address": f"127.0.0.1:{port}", "bootstrap": bootstrap, "advertise_address": ""},
            network={"rpc_timeout": timeout},
            storage={"data_dir": str(self.data_dir)},
        )
        node = build_node(cfg)
        if bootstrap:
            await node.join(bootstrap)

        runner = web.AppRunner(create_app(node))
        await runner.setup()
        await web.TCPSite(runner, "127.0.0.1", port).start()

        running = RunningNode(node=node, runner=runner)
        self.nodes.append(running)
        return running

    async def stop_all(self) -> None:
        for running in self.nodes:
            await running.runner.cleanup()
        self.nodes.clear()


@pytest_asyncio.fixture
async def node_factory(temp_dir: Path):
    factory = NodeFactory(temp_dir)
    yield factory
    await factory.stop_all()
