# distlab

`distlab` holds the building blocks of a small distributed-systems lab. It is
written in plain Python and has no third-party dependencies. The MapReduce part
uses UNIX-domain sockets, so it needs a POSIX system.

## MapReduce (`distlab.mr_rpc`, `distlab.mr_coordinator`, `distlab.mr_worker`)

### Coordinator

`make_coordinator(files, n_reduce)` creates a `Coordinator` and starts serving
it in a background thread. It listens on the UNIX-domain socket whose path
`coordinator_sock()` returns: `/var/tmp/824-mr-<uid>`.

- The coordinator hands out one map task for each input file.
- When every map task has been reported done, it queues `n_reduce` reduce tasks,
  named `reduce_1` to `reduce_<n_reduce>`.
- A task that is not reported done within ten seconds goes back on the queue.
- `Coordinator.rpc_handler(args)` records the task named in `args.task_name` as
  done, if there is one. It then returns an `RpcReply` holding the next task, or
  an empty task name if there is none.
- `Coordinator.done()` returns True once the reduce phase has started, the queue
  is empty and every reduce task has been reported done.
- `Coordinator.shutdown()` stops the server and removes the socket file.

Requests travel as one JSON object per line. Each object has the form
`{"method": ..., "args": {...}}`. The methods are `Coordinator.RpcHandler` and
`Coordinator.Example`.

### Worker

`worker(mapf, reducef)` connects to `coordinator_sock()` and keeps asking for
tasks. It reports each finished task with its next request. It stops after the
coordinator has had no task for it for about twelve seconds, checking once a
second. The worker reads and writes files in the current directory.

- `mapf(filename, contents)` must return a list of `KeyValue`. `do_map` sends each
  pair to bucket `ihash(key) % n_reduce`, a 32-bit FNV-1a hash. It writes each
  non-empty bucket to `mr-<task number>-<bucket>`, with buckets numbered from 1.
  Each line of the file is a JSON record `{"Key": ..., "Value": ...}`. A file that
  already exists is not written again.
- `reducef(key, values)` must return a string. `do_reduce` reads every
  `mr-<n>-<reduce number>` file and sorts the pairs by key. It writes one
  `key output` line per key to `mr-out-<reduce number>`, unless that file already
  exists.
- `call(rpcname, args)` sends one request. It returns the reply, or None if the
  coordinator reported an error. It raises `ConnectionError` if the socket cannot
  be reached.
- `call_example()` sends the example call and prints `reply.Y 100`.

```python
from distlab.mr_coordinator import make_coordinator
from distlab.mr_worker import KeyValue, worker

def mapf(name, text):
    return [KeyValue(word, "1") for word in text.split()]

def reducef(key, values):
    return str(len(values))

coordinator = make_coordinator(["a.txt", "b.txt"], 3)
worker(mapf, reducef)          # returns once the coordinator has stayed idle
assert coordinator.done()
coordinator.shutdown()
```

## Persistence (`distlab.persister`)

A `Persister` is a thread-safe, in-memory store for a peer's Raft state and its
snapshot. Both are held as bytes.

- `save_raft_state`, `read_raft_state` and `raft_state_size` handle the Raft state.
- `save_state_and_snapshot` saves the state and the snapshot together.
- `read_snapshot` and `snapshot_size` handle the snapshot.
- `copy()` returns a new `Persister` with the same contents.

## Raft (`distlab.raft`)

`make(peers, me, persister, apply_ch)` creates a `Raft` peer and starts its
election and heartbeat threads. Constructing `Raft` directly does not start them.

- `peers` holds one end point per server, this one at index `me`. Each end point
  must provide `call(rpcname, args)`, returning the reply or None on failure. The
  names used are `Raft.RequestVote` and `Raft.AppendEntries`.
- `apply_ch` is anything with a `put` method, such as a `queue.Queue`. The peer
  puts each committed entry on it as an `ApplyMsg`.
- `Raft.start(command)` appends a command and begins replicating it. It returns
  `(index, term, is_leader)`, or `(-1, -1, False)` on a peer that is not leader.
- `Raft.get_state()` returns `(term, is_leader)`.
- `Raft.request_vote(args)` and `Raft.append_entries(args)` are the handlers for
  incoming requests. They take `RequestVoteArgs` and `AppendEntriesArgs` and
  return the matching reply.
- `Raft.kill()` stops the background threads, and `Raft.killed()` reports whether
  it has been called.
- Election timeouts are chosen at random between 200 and 350 ms. Heartbeats go
  out every 150 ms.
- `dprintf(fmt, *args)` logs a debugging message when `distlab.raft.DEBUG` is True.

## Sharding (`distlab.shardctrler_common`, `distlab.shardctrler_client`, `distlab.shardkv_common`, `distlab.shardkv_client`)

- `distlab.shardctrler_common.Config` assigns each of `NSHARDS` (10) shards to a
  group id and maps group ids to server names.
- `distlab.shardctrler_client.Clerk(servers)` offers `query(num)`, `join(servers)`,
  `leave(gids)` and `move(shard, gid)`. Each sends a request to the controller
  servers in turn until one replies without `wrong_leader`. It pauses 100 ms
  between rounds and retries forever.
- `distlab.shardkv_client.Clerk(ctrlers, make_end)` sends `get`, `put` and
  `append` to the group that owns the key's shard. On a wrong-group reply, or when
  no server answers, it asks the controller for the latest configuration and
  tries again. `get` returns `""` for a missing key.
- `key2shard(key)` is the first byte of the key modulo `NSHARDS`. It is 0 for an
  empty key.

## What this package does not do

- Raft state is never written to the `Persister`, so a restarted peer starts from
  an empty log.
- `cond_install_snapshot` always returns True, and `snapshot` does nothing. The
  log is never trimmed.
- There is no network transport or network simulator for Raft peers. The caller
  provides the end points.
- There is no shard controller server and no sharded key/value server, only the
  clients and the request and reply types.
- There is no command-line program.

## Tests

```
pip install -e .[test]
pytest
```