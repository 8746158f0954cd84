"""Types shared by the shard controller service and its clients.

The controller assigns shards to replication groups. A configuration is
numbered; configuration 0 has no groups and every shard assigned to group 0,
the invalid group.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

NSHARDS = 10


class Err(str, Enum):
    """Error values carried in controller replies."""

    OK = "OK"


OK = Err.OK


def _initial_shards() -> list[int]:
    return [0] * NSHARDS


@dataclass
class Config:
    """An assignment of shards to groups."""

    num: int = 0
    shards: list[int] = field(default_factory=_initial_shards)
    groups: dict[int, list[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.shards = list(self.shards)
        if len(self.shards) != NSHARDS:
            raise ValueError(
                f"a configuration holds exactly {NSHARDS} shards, got {len(self.shards)}"
            )


@dataclass
class JoinArgs:
    """New group id to server-list mappings."""

    servers: dict[int, list[str]] = field(default_factory=dict)


@dataclass
class JoinReply:
    wrong_leader: bool = False
    err: str = ""


@dataclass
class LeaveArgs:
    """Group ids to remove."""

    gids: list[int] = field(default_factory=list)


@dataclass
class LeaveReply:
    wrong_leader: bool = False
    err: str = ""


@dataclass
class MoveArgs:
    """Hand one shard to a group."""

    shard: int = 0
    gid: int = 0


@dataclass
class MoveReply:
    wrong_leader: bool = False
    err: str = ""


@dataclass
class QueryArgs:
    """The desired configuration number, or -1 for the latest."""

    num: int = 0


@dataclass
class QueryReply:
    wrong_leader: bool = False
    err: str = ""
    config: Config = field(default_factory=Config)