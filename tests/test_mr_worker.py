import json
import os
from collections import Counter

import pytest

from distlab.mr_coordinator import Coordinator
from distlab.mr_rpc import ExampleArgs, RpcArgs, coordinator_sock
from distlab.mr_worker import (
    KeyValue,
    call,
    call_example,
    do_map,
    do_reduce,
    ihash,
)

TEXT = "the quick brown fox jumps over the lazy dog the end"


def word_map(filename, contents):
    return [KeyValue(w, "1") for w in contents.split()]


def count_reduce(key, values):
    return str(len(values))


class _Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, key, values):
        self.calls.append((key, list(values)))
        return str(len(values))


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def served():
    c = Coordinator(["input.txt"], 2, sockname=coordinator_sock(), task_timeout=60)
    c.serve()
    yield c
    c.shutdown()


def test_ihash_empty_is_offset_basis():
    assert ihash("") == 0x811C9DC5 & 0x7FFFFFFF


@pytest.mark.parametrize("key", ["a", "hello", "zürich", "x" * 100])
def test_ihash_is_non_negative_31_bit_and_stable(key):
    h = ihash(key)
    assert 0 <= h <= 0x7FFFFFFF
    assert h == ihash(key)


def test_do_map_buckets_by_hash(workdir):
    (workdir / "in.txt").write_text(TEXT)
    do_map(word_map, "in.txt", 7, 3)
    produced = sorted(p.name for p in workdir.glob("mr-7-*"))
    assert produced
    assert set(produced) <= {"mr-7-1", "mr-7-2", "mr-7-3"}
    total = 0
    for name in produced:
        bucket = int(name.rsplit("-", 1)[1])
        for line in (workdir / name).read_text().splitlines():
            record = json.loads(line)
            assert set(record) == {"Key", "Value"}
            assert ihash(record["Key"]) % 3 == bucket - 1
            total += 1
    assert total == len(TEXT.split())


def test_do_map_keeps_existing_output(workdir):
    (workdir / "in.txt").write_text("alpha")
    bucket = ihash("alpha") % 1 + 1
    existing = workdir / f"mr-1-{bucket}"
    existing.write_text("keep")
    do_map(word_map, "in.txt", 1, 1)
    assert existing.read_text() == "keep"


def test_do_map_missing_input_raises(workdir):
    with pytest.raises(FileNotFoundError):
        do_map(word_map, "absent.txt", 1, 1)


def test_do_reduce_reads_only_its_bucket(workdir):
    (workdir / "mr-1-2").write_text('{"Key":"b","Value":"1"}\n{"Key":"a","Value":"1"}\n')
    (workdir / "mr-3-2").write_text('{"Key":"a","Value":"1"}\n')
    (workdir / "mr-1-1").write_text('{"Key":"z","Value":"1"}\n')
    recorder = _Recorder()
    assert do_reduce(recorder, "reduce_2") is None
    assert recorder.calls == [("a", ["1", "1"]), ("b", ["1"])]
    assert (workdir / "mr-out-2").read_text() == "a 2\nb 1\n"


def test_do_reduce_ignores_bad_task_name(workdir):
    (workdir / "mr-1-1").write_text('{"Key":"a","Value":"1"}\n')
    recorder = _Recorder()
    assert do_reduce(recorder, "map_1") is None
    assert do_reduce(recorder, "reduce_x") is None
    assert recorder.calls == []
    assert not list(workdir.glob("mr-out-*"))


def test_do_reduce_keeps_existing_output(workdir):
    (workdir / "mr-1-1").write_text('{"Key":"a","Value":"1"}\n')
    (workdir / "mr-out-1").write_text("old")
    recorder = _Recorder()
    assert do_reduce(recorder, "reduce_1") is None
    assert recorder.calls == []
    assert (workdir / "mr-out-1").read_text() == "old"


def test_map_then_reduce_counts_words(workdir):
    (workdir / "a.txt").write_text(TEXT)
    (workdir / "b.txt").write_text("the fox")
    do_map(word_map, "a.txt", 1, 3)
    do_map(word_map, "b.txt", 2, 3)
    for n in range(1, 4):
        do_reduce(count_reduce, f"reduce_{n}")
    counts = {}
    for out in workdir.glob("mr-out-*"):
        bucket = int(out.name.rsplit("-", 1)[1])
        for line in out.read_text().splitlines():
            key, value = line.split(" ")
            assert key not in counts
            assert ihash(key) % 3 + 1 == bucket
            counts[key] = int(value)
    assert counts == dict(Counter((TEXT + " the fox").split()))


def test_call_example(served, capsys):
    reply = call_example()
    assert reply.y == 100
    assert "reply.Y 100" in capsys.readouterr().out


def test_call_rpc_handler(served):
    reply = call("Coordinator.RpcHandler", RpcArgs())
    assert reply.task_name == "input.txt"
    assert reply.n_reduce == 2


def test_call_unknown_method_returns_none(served, capsys):
    assert call("Coordinator.Missing", ExampleArgs(x=1)) is None
    assert "Coordinator.Missing" in capsys.readouterr().out


def test_call_without_server_raises():
    if os.path.exists(coordinator_sock()):
        os.remove(coordinator_sock())
    with pytest.raises(ConnectionError):
        call("Coordinator.Example", ExampleArgs(x=1))