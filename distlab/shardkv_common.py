"""Types shared by the sharded key/value servers and their clients."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

PUT = "Put"
APPEND = "Append"


class Err(str, Enum):
    """Error values carried in key/value replies."""

    OK = "OK"
    ERR_NO_KEY = "ErrNoKey"
    ERR_WRONG_GROUP = "ErrWrongGroup"
    ERR_WRONG_LEADER = "ErrWrongLeader"


OK = Err.OK
ERR_NO_KEY = Err.ERR_NO_KEY
ERR_WRONG_GROUP = Err.ERR_WRONG_GROUP
ERR_WRONG_LEADER = Err.ERR_WRONG_LEADER


@dataclass
class PutAppendArgs:
    """A Put or Append request."""

    key: str = ""
    value: str = ""
    op: str = PUT


@dataclass
class PutAppendReply:
    err: str = ""


@dataclass
class GetArgs:
    key: str = ""


@dataclass
class GetReply:
    err: str = ""
    value: str = ""