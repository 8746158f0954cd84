"""Client for the sharded key/value service.

The client asks the shard controller for the assignment of shards to groups
and then talks to the group that holds the key's shard.
"""

from __future__ import annotations

import time

from distlab.shardctrler_client import Clerk as ControllerClerk
from distlab.shardctrler_common import NSHARDS, Config
from distlab.shardkv_common import (
    APPEND,
    ERR_NO_KEY,
    ERR_WRONG_GROUP,
    OK,
    PUT,
    GetArgs,
    PutAppendArgs,
)

RETRY_INTERVAL = 0.1


def key2shard(key: str) -> int:
    """Return the shard that holds ``key``: its first byte modulo the shard count."""
    data = key.encode("utf-8")
    shard = data[0] if data else 0
    return shard % NSHARDS


class Clerk:
    """Sends key/value requests to whichever group owns the key's shard.

    ``make_end(servername)`` turns a server name from a configuration into an
    end point whose ``call(rpcname, args)`` returns the reply or None.
    """

    def __init__(self, ctrlers, make_end) -> None:
        self.sm = ControllerClerk(ctrlers)
        self.config = Config()
        self.make_end = make_end

    def _servers_for(self, key: str) -> list[str] | None:
        gid = self.config.shards[key2shard(key)]
        return self.config.groups.get(gid)

    def _refresh_config(self) -> None:
        time.sleep(RETRY_INTERVAL)
        self.config = self.sm.query(-1)

    def get(self, key: str) -> str:
        """Fetch the value of ``key``; "" if it does not exist. Retries forever."""
        args = GetArgs(key=key)
        while True:
            for name in self._servers_for(key) or ():
                reply = self.make_end(name).call("ShardKV.Get", args)
                if reply is None:
                    continue
                if reply.err in (OK, ERR_NO_KEY):
                    return reply.value
                if reply.err == ERR_WRONG_GROUP:
                    break
            self._refresh_config()

    def put_append(self, key: str, value: str, op: str) -> None:
        """Apply a Put or Append of ``value`` to ``key``. Retries forever."""
        args = PutAppendArgs(key=key, value=value, op=op)
        while True:
            for name in self._servers_for(key) or ():
                reply = self.make_end(name).call("ShardKV.PutAppend", args)
                if reply is None:
                    continue
                if reply.err == OK:
                    return
                if reply.err == ERR_WRONG_GROUP:
                    break
            self._refresh_config()

    def put(self, key: str, value: str) -> None:
        """Set ``key`` to ``value``."""
        self.put_append(key, value, PUT)

    def append(self, key: str, value: str) -> None:
        """Append ``value`` to the value of ``key``."""
        self.put_append(key, value, APPEND)