"""Client for the shard controller service."""

from __future__ import annotations

import secrets
import time

from distlab.shardctrler_common import (
    Config,
    JoinArgs,
    LeaveArgs,
    MoveArgs,
    QueryArgs,
)

RETRY_INTERVAL = 0.1


def nrand() -> int:
    """Return a random non-negative integer below 2**62."""
    return secrets.randbelow(1 << 62)


class Clerk:
    """Sends requests to the controller replicas until one leader answers.

    Each server end point's ``call(rpcname, args)`` returns the reply, or None
    if the call failed.
    """

    def __init__(self, servers) -> None:
        self.servers = list(servers)

    def _call_leader(self, rpcname: str, args):
        while True:
            for srv in self.servers:
                reply = srv.call(rpcname, args)
                if reply is not None and not reply.wrong_leader:
                    return reply
            time.sleep(RETRY_INTERVAL)

    def query(self, num: int) -> Config:
        """Fetch configuration ``num``, or the latest one if ``num`` is -1."""
        return self._call_leader("ShardCtrler.Query", QueryArgs(num=num)).config

    def join(self, servers) -> None:
        """Add groups, given as a mapping of group id to server names."""
        self._call_leader("ShardCtrler.Join", JoinArgs(servers=dict(servers)))

    def leave(self, gids) -> None:
        """Remove the given groups."""
        self._call_leader("ShardCtrler.Leave", LeaveArgs(gids=list(gids)))

    def move(self, shard: int, gid: int) -> None:
        """Hand ``shard`` to group ``gid``."""
        self._call_leader("ShardCtrler.Move", MoveArgs(shard=shard, gid=gid))