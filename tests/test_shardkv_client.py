from distlab.shardctrler_common import NSHARDS, Config, QueryArgs, QueryReply
from distlab.shardkv_client import Clerk, key2shard
from distlab.shardkv_common import (
    ERR_NO_KEY,
    ERR_WRONG_GROUP,
    ERR_WRONG_LEADER,
    OK,
    GetArgs,
    GetReply,
    PutAppendArgs,
    PutAppendReply,
)


class FakeEnd:
    def __init__(self, responder):
        self.responder = responder
        self.calls = []

    def call(self, rpcname, args):
        self.calls.append((rpcname, args))
        return self.responder(rpcname, args)


def controller(*configs):
    pending = list(configs)

    def respond(rpcname, args):
        assert rpcname == "ShardCtrler.Query"
        assert args == QueryArgs(num=-1)
        return QueryReply(config=pending.pop(0) if len(pending) > 1 else pending[0])

    return FakeEnd(respond)


def config_for(gid, names, num=1):
    return Config(num=num, shards=[gid] * NSHARDS, groups={gid: list(names)})


def test_digit_keys_cover_every_shard():
    assert {key2shard(str(i)) for i in range(10)} == set(range(NSHARDS))


def test_key2shard_uses_first_character_only():
    assert key2shard("abc") == key2shard("a")
    assert key2shard("") == 0
    assert all(0 <= key2shard(k) < NSHARDS for k in ["x", "yy", "\u00e9t\u00e9"])


def test_get_skips_wrong_leader():
    servers = {
        "a": FakeEnd(lambda n, a: GetReply(err=ERR_WRONG_LEADER)),
        "b": FakeEnd(lambda n, a: GetReply(err=OK, value="v1")),
    }
    ck = Clerk([controller(config_for(100, ["a", "b"]))], servers.__getitem__)
    assert ck.get("k") == "v1"
    assert servers["a"].calls == [("ShardKV.Get", GetArgs(key="k"))]


def test_get_missing_key_returns_empty_string():
    servers = {"a": FakeEnd(lambda n, a: GetReply(err=ERR_NO_KEY))}
    ck = Clerk([controller(config_for(100, ["a"]))], servers.__getitem__)
    assert ck.get("missing") == ""


def test_wrong_group_triggers_new_configuration():
    servers = {
        "a": FakeEnd(lambda n, a: GetReply(err=ERR_WRONG_GROUP)),
        "b": FakeEnd(lambda n, a: GetReply(err=OK, value="old")),
        "c": FakeEnd(lambda n, a: GetReply(err=OK, value="new")),
    }
    ctrl = controller(config_for(100, ["a", "b"]), config_for(101, ["c"], num=2))
    ck = Clerk([ctrl], servers.__getitem__)
    assert ck.get("k") == "new"
    assert servers["b"].calls == []
    assert ck.config.num == 2
    assert len(ctrl.calls) == 2


def test_put_sends_put_operation():
    server = FakeEnd(lambda n, a: PutAppendReply(err=OK))
    ck = Clerk([controller(config_for(100, ["a"]))], {"a": server}.__getitem__)
    ck.put("k", "v")
    assert server.calls == [("ShardKV.PutAppend", PutAppendArgs("k", "v", "Put"))]


def test_append_retries_after_failed_call():
    answers = [None, PutAppendReply(err=OK)]
    server = FakeEnd(lambda n, a: answers.pop(0))
    ck = Clerk([controller(config_for(100, ["a"]))], {"a": server}.__getitem__)
    ck.append("k", "x")
    assert [args for _, args in server.calls] == [PutAppendArgs("k", "x", "Append")] * 2


def test_put_append_moves_to_new_group_on_wrong_group():
    servers = {
        "a": FakeEnd(lambda n, a: PutAppendReply(err=ERR_WRONG_GROUP)),
        "c": FakeEnd(lambda n, a: PutAppendReply(err=OK)),
    }
    ctrl = controller(config_for(100, ["a"]), config_for(101, ["c"], num=2))
    ck = Clerk([ctrl], servers.__getitem__)
    ck.put_append("k", "v", "Put")
    assert len(servers["a"].calls) == 1
    assert servers["c"].calls == [("ShardKV.PutAppend", PutAppendArgs("k", "v", "Put"))]