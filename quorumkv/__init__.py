"""Raft consensus peer, shard controller client and sharded key/value client."""

__version__ = "0.1.0"