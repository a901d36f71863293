"""
Routing Table Unit Tests
========================

[UNIT] XOR metric, Peer records and RoutingTable behaviour.
"""

import threading

import pytest

from dhtnode.dht.routing import Peer, RoutingTable, xor_distance


SAMPLE_IDS = [
    "0000000000000000",
    "ffffffffffffffff",
    "0123456789abcdef",
    "a1b2c3d4e5f60718",
    "8000000000000001",
]


# ============================================================================
# XOR metric
# ============================================================================

class TestXorDistance:
    """Test the XOR distance metric."""

    @pytest.mark.parametrize("node_id", SAMPLE_IDS)
    def test_identity(self, node_id):
        assert xor_distance(node_id, node_id) == 0

    def test_symmetry(self):
        for a in SAMPLE_IDS:
            for b in SAMPLE_IDS:
                assert xor_distance(a, b) == xor_distance(b, a)

    def test_big_endian_fold(self):
        assert xor_distance("0000000000000000", "ff00000000000000") == 0xFF << 56
        assert xor_distance("0000000000000000", "0000000000000001") == 1

    def test_only_first_eight_bytes_count(self):
        """A 40-char key is compared with a 16-char ID by prefix only."""
        key = "0123456789abcdef" + "ff" * 12
        assert xor_distance(key, "0123456789abcdef") == 0
        assert xor_distance("0123456789abcdef00", "0123456789abcdefff") == 0

    def test_shorter_id_truncates(self):
        assert xor_distance("01", "0300") == 2
        assert xor_distance("", "0123456789abcdef") == 0

    def test_invalid_hex_tail_ignored(self):
        assert xor_distance("zz", "00") == 0
        assert xor_distance("01zz", "02") == 3
        # odd trailing nibble is not a whole byte
        assert xor_distance("011", "02f") == 3

    def test_uppercase_hex(self):
        assert xor_distance("FF", "ff") == 0


# ============================================================================
# Peer
# ============================================================================

class TestPeer:
    """Test Peer serialization."""

    def test_round_trip(self):
        peer = Peer(node_id="abcd", address="127.0.0.1:8000")
        assert Peer.from_dict(peer.to_dict()) == peer

    def test_missing_fields_become_empty(self):
        assert Peer.from_dict({}) == Peer(node_id="", address="")

    def test_non_object_rejected(self):
        with pytest.raises(ValueError):
            Peer.from_dict(["abcd", "127.0.0.1:8000"])

    def test_non_string_fields_rejected(self):
        with pytest.raises(ValueError):
            Peer.from_dict({"node_id": 1, "address": "127.0.0.1:8000"})


# ============================================================================
# RoutingTable
# ============================================================================

@pytest.fixture
def local_peer() -> Peer:
    return Peer(node_id="0000000000000000", address="127.0.0.1:8000")


@pytest.fixture
def table(local_peer) -> RoutingTable:
    return RoutingTable(local_peer)


class TestRoutingTable:
    """Test RoutingTable mutation and queries."""

    def test_seeded_with_self(self, table, local_peer):
        assert len(table) == 1
        assert local_peer.node_id in table
        assert table.all() == [local_peer]

    def test_empty_without_local(self):
        assert len(RoutingTable()) == 0

    def test_add_and_get(self, table):
        peer = Peer(node_id="1111111111111111", address="127.0.0.1:8001")
        assert table.add(peer) is True
        assert table.get(peer.node_id) == peer
        assert len(table) == 2

    @pytest.mark.parametrize("peer", [
        Peer(node_id="", address="127.0.0.1:8001"),
        Peer(node_id="1111111111111111", address=""),
    ])
    def test_incomplete_peer_ignored(self, table, peer):
        assert table.add(peer) is False
        assert len(table) == 1

    def test_add_is_idempotent(self, table):
        peer = Peer(node_id="1111111111111111", address="127.0.0.1:8001")
        table.add(peer)
        table.add(peer)
        assert len(table) == 2

    def test_last_address_wins(self, table):
        table.add(Peer(node_id="1111111111111111", address="127.0.0.1:8001"))
        table.add(Peer(node_id="1111111111111111", address="10.0.0.1:9001"))
        assert table.get("1111111111111111").address == "10.0.0.1:9001"
        assert len(table) == 2

    def test_add_many_excludes_self(self, table, local_peer):
        peers = [
            local_peer,
            Peer(node_id="2222222222222222", address=local_peer.address),
            Peer(node_id="3333333333333333", address="127.0.0.1:8003"),
            Peer(node_id="", address="127.0.0.1:8004"),
        ]
        added = table.add_many(peers, exclude_id=local_peer.node_id, exclude_address=local_peer.address)
        assert added == 1
        assert "2222222222222222" not in table
        assert "3333333333333333" in table

    def test_all_returns_copy(self, table):
        snapshot = table.all()
        snapshot.append(Peer(node_id="4444444444444444", address="127.0.0.1:8004"))
        assert len(table) == 1


class TestClosest:
    """Test closest-peer queries."""

    @pytest.fixture
    def populated(self, table) -> RoutingTable:
        for i, node_id in enumerate(SAMPLE_IDS[1:], start=1):
            table.add(Peer(node_id=node_id, address=f"127.0.0.1:{8000 + i}"))
        return table

    def test_sorted_by_distance(self, populated):
        target = "0123456789abcdee"
        result = populated.closest(target, 10)
        distances = [xor_distance(p.node_id, target) for p in result]
        assert distances == sorted(distances)
        assert result[0].node_id == "0123456789abcdef"

    def test_bounded_by_k(self, populated):
        assert len(populated.closest("ffffffffffffffff", 2)) == 2

    def test_fewer_than_k(self, table):
        assert len(table.closest("ffffffffffffffff", 3)) == 1

    def test_non_positive_k(self, populated):
        assert populated.closest("ffffffffffffffff", 0) == []
        assert populated.closest("ffffffffffffffff", -1) == []

    def test_exclude(self, populated, local_peer):
        result = populated.closest(local_peer.node_id, 10, exclude=local_peer.node_id)
        assert local_peer.node_id not in [p.node_id for p in result]
        assert len(result) == len(SAMPLE_IDS) - 1

    def test_self_included_without_exclude(self, populated, local_peer):
        assert populated.closest(local_peer.node_id, 1)[0] == local_peer


class TestConcurrency:
    """Test the table under concurrent writers and readers."""

    def test_parallel_adds(self, table):
        def writer(offset: int):
            for i in range(50):
                table.add(Peer(node_id=f"{offset:02x}{i:014x}", address=f"10.0.{offset}.{i}:8000"))

        def reader():
            for _ in range(50):
                table.closest("ffffffffffffffff", 3)
                table.all()

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(1, 5)]
        threads += [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(table) == 1 + 4 * 50
