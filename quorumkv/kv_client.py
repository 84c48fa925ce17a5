"""Client for the sharded key/value service."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence

from quorumkv.ctrler_client import ClientEnd, CtrlerClerk
from quorumkv.ctrler_types import NSHARDS, Config
from quorumkv.kv_types import Err, GetArgs, PutAppendArgs

RETRY_INTERVAL = 0.1


def key2shard(key: str) -> int:
    """Return the shard that holds ``key``."""
    data = key.encode()
    shard = data[0] if data else 0
    return shard % NSHARDS


class KVClerk:
    """Asks the controller where a key lives, then talks to that group."""

    def __init__(
        self,
        ctrlers: Sequence[ClientEnd],
        make_end: Callable[[str], ClientEnd],
    ) -> None:
        self.sm = CtrlerClerk(ctrlers)
        self.config = Config()
        self.make_end = make_end

    def _group_servers(self, key: str) -> list[str] | None:
        gid = self.config.shards[key2shard(key)]
        return self.config.groups.get(gid)

    def _refresh(self) -> None:
        time.sleep(RETRY_INTERVAL)
        self.config = self.sm.query(-1)

    def get(self, key: str) -> str:
        """Fetch the value for ``key``; "" if absent. Retries forever."""
        args = GetArgs(key=key)
        while True:
            servers = self._group_servers(key)
            for name in servers or ():
                reply = self.make_end(name).call("ShardKV.Get", args)
                if reply is None:
                    continue
                if reply.err in (Err.OK, Err.NO_KEY):
                    return reply.value
                if reply.err == Err.WRONG_GROUP:
                    break
            self._refresh()

    def put_append(self, key: str, value: str, op: str) -> None:
        args = PutAppendArgs(key=key, value=value, op=op)
        while True:
            servers = self._group_servers(key)
            for name in servers or ():
                reply = self.make_end(name).call("ShardKV.PutAppend", args)
                if reply is None:
                    continue
                if reply.err == Err.OK:
                    return
                if reply.err == Err.WRONG_GROUP:
                    break
            self._refresh()

    def put(self, key: str, value: str) -> None:
        self.put_append(key, value, "Put")

    def append(self, key: str, value: str) -> None:
        self.put_append(key, value, "Append")