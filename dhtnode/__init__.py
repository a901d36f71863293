"""
dhtnode
=======

Узел минимального P2P контентно-адресуемого хранилища (по мотивам Kademlia).
"""

__version__ = "0.3.0"
