"""Argument and reply types for the map/reduce coordinator protocol."""

from __future__ import annotations

import os
from dataclasses import dataclass

MAP_PHASE = 1
REDUCE_PHASE = 2


@dataclass
class ExampleArgs:
    """Arguments of the example call."""

    x: int = 0


@dataclass
class ExampleReply:
    """Reply of the example call."""

    y: int = 0


@dataclass
class RpcArgs:
    """A worker request; a non-empty task name reports that task as finished."""

    task_name: str = ""


@dataclass
class RpcReply:
    """A task handed to a worker; an empty task name means there is no work."""

    task_name: str = ""
    n_reduce: int = 0
    phase: int = 0
    index: int = 0


def coordinator_sock() -> str:
    """Return the UNIX-domain socket path the coordinator listens on."""
    return f"/var/tmp/824-mr-{os.getuid()}"