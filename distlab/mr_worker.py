"""The map/reduce worker: asks the coordinator for tasks and runs them."""

from __future__ import annotations

import json
import os
import re
import socket
import tempfile
import time
from dataclasses import asdict, dataclass
from itertools import groupby
from operator import attrgetter
from typing import Callable, Iterator

from distlab.mr_rpc import (
    MAP_PHASE,
    ExampleArgs,
    ExampleReply,
    RpcArgs,
    RpcReply,
    coordinator_sock,
)

_IDLE_LIMIT = 11
_REPLY_TYPES = {
    "Coordinator.RpcHandler": RpcReply,
    "Coordinator.Example": ExampleReply,
}


@dataclass
class KeyValue:
    """One key/value pair emitted by a map function."""

    key: str
    value: str


MapFunc = Callable[[str, str], "list[KeyValue]"]
ReduceFunc = Callable[[str, "list[str]"], str]


def ihash(key: str) -> int:
    """FNV-1a hash of the key, masked to a non-negative 31-bit value."""
    h = 0x811C9DC5
    for byte in key.encode("utf-8"):
        h ^= byte
        h = (h * 0x01000193) & 0xFFFFFFFF
    return h & 0x7FFFFFFF


def worker(mapf: MapFunc, reducef: ReduceFunc) -> None:
    """Keep asking for tasks until the coordinator has had none for a while."""
    args = RpcArgs()
    idle = 0
    while True:
        reply = call("Coordinator.RpcHandler", args) or RpcReply()
        if not reply.task_name:
            if idle >= _IDLE_LIMIT:
                break
            idle += 1
            args.task_name = ""
            time.sleep(1)
            continue
        if reply.phase == MAP_PHASE:
            do_map(mapf, reply.task_name, reply.index, reply.n_reduce)
        else:
            do_reduce(reducef, reply.task_name)
        args.task_name = reply.task_name


def call_example() -> ExampleReply | None:
    """Send the example call and print the reply value."""
    reply = call("Coordinator.Example", ExampleArgs(x=99))
    print(f"reply.Y {reply.y if reply else 0}")
    return reply


def call(rpcname: str, args):
    """Send one call to the coordinator; return its reply, or None if the call failed."""
    conn = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        conn.connect(coordinator_sock())
    except OSError as exc:
        conn.close()
        raise ConnectionError(f"dialing: {exc}") from exc
    request = json.dumps({"method": rpcname, "args": asdict(args)}).encode("utf-8")
    with conn, conn.makefile("rwb") as stream:
        stream.write(request + b"\n")
        stream.flush()
        line = stream.readline()
    if not line:
        print("rpc: connection closed")
        return None
    response = json.loads(line)
    if "error" in response:
        print(response["error"])
        return None
    payload = response.get("reply", {})
    reply_type = _REPLY_TYPES.get(rpcname)
    return reply_type(**payload) if reply_type else payload


def do_map(mapf: MapFunc, task_name: str, index: int, n_reduce: int) -> None:
    """Run the map function on one input file and write its bucketed output."""
    with open(task_name, encoding="utf-8") as f:
        content = f.read()

    buckets: list[list[KeyValue]] = [[] for _ in range(n_reduce)]
    for kv in mapf(task_name, content):
        buckets[ihash(kv.key) % n_reduce].append(kv)

    for number, kvs in enumerate(buckets, start=1):
        if not kvs:
            continue
        file_name = f"mr-{index}-{number}"
        if os.path.exists(file_name):
            continue
        try:
            tmp = tempfile.NamedTemporaryFile(
                "w", dir=".", delete=False, encoding="utf-8"
            )
        except OSError:
            continue
        with tmp:
            for kv in kvs:
                tmp.write(
                    json.dumps(
                        {"Key": kv.key, "Value": kv.value},
                        separators=(",", ":"),
                        ensure_ascii=False,
                    )
                    + "\n"
                )
        os.replace(tmp.name, file_name)


def _decode_key_values(text: str) -> Iterator[KeyValue]:
    decoder = json.JSONDecoder()
    pos = 0
    while True:
        while pos < len(text) and text[pos] in " \t\r\n":
            pos += 1
        if pos >= len(text):
            return
        try:
            obj, pos = decoder.raw_decode(text, pos)
        except ValueError:
            return
        if not isinstance(obj, dict):
            return
        key, value = obj.get("Key", ""), obj.get("Value", "")
        if not isinstance(key, str) or not isinstance(value, str):
            return
        yield KeyValue(key, value)


def do_reduce(reducef: ReduceFunc, task_name: str) -> None:
    """Gather the intermediate files of one reduce task and write its output."""
    prefix = "reduce_"
    if not task_name.startswith(prefix):
        return
    try:
        reduce_index = int(task_name[len(prefix):])
    except ValueError:
        return

    pattern = re.compile(rf"mr-[0-9]+-{re.escape(str(reduce_index))}")
    intermediate: list[KeyValue] = []
    try:
        entries = sorted(os.scandir("."), key=attrgetter("name"))
    except OSError:
        return
    for entry in entries:
        if not pattern.fullmatch(entry.name) or entry.is_dir():
            continue
        try:
            with open(entry.name, encoding="utf-8") as f:
                text = f.read()
        except OSError:
            print("can't open " + entry.name)
            continue
        intermediate.extend(_decode_key_values(text))

    intermediate.sort(key=attrgetter("key"))

    out_name = f"mr-out-{reduce_index}"
    if os.path.exists(out_name):
        return
    with tempfile.NamedTemporaryFile("w", dir=".", delete=False, encoding="utf-8") as out:
        for key, group in groupby(intermediate, key=attrgetter("key")):
            output = reducef(key, [kv.value for kv in group])
            out.write(f"{key} {output}\n")
    os.replace(out.name, out_name)