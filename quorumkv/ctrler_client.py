"""Client for the shard controller service."""

from __future__ import annotations

import secrets
import time
from collections.abc import Sequence
from typing import Any, Protocol

from quorumkv.ctrler_types import (
    Config,
    JoinArgs,
    LeaveArgs,
    MoveArgs,
    QueryArgs,
)

RETRY_INTERVAL = 0.1


class ClientEnd(Protocol):
    """An RPC endpoint: returns the reply, or None if the call was lost."""

    def call(self, method: str, args: Any) -> Any | None: ...


def nrand() -> int:
    """Return a random non-negative 62-bit integer."""
    return secrets.randbelow(1 << 62)


class CtrlerClerk:
    """Sends requests to the controller replicas until one leader answers."""

    def __init__(self, servers: Sequence[ClientEnd]) -> None:
        self.servers = list(servers)

    def _call(self, method: str, args: Any) -> Any:
        while True:
            for srv in self.servers:
                reply = srv.call(method, args)
                if reply is not None and not reply.wrong_leader:
                    return reply
            time.sleep(RETRY_INTERVAL)

    def query(self, num: int) -> Config:
        """Fetch config ``num``, or the latest one if ``num`` is -1."""
        return self._call("ShardCtrler.Query", QueryArgs(num=num)).config

    def join(self, servers: dict[int, list[str]]) -> None:
        self._call("ShardCtrler.Join", JoinArgs(servers=servers))

    def leave(self, gids: list[int]) -> None:
        self._call("ShardCtrler.Leave", LeaveArgs(gids=gids))

    def move(self, shard: int, gid: int) -> None:
        self._call("ShardCtrler.Move", MoveArgs(shard=shard, gid=gid))