# quorumkv

A Raft consensus peer, plus the client side of a shard controller and of a
sharded key/value store. Everything runs in-process on threads; the package
talks to other peers only through endpoint objects you supply.

## What is inside

- `quorumkv.persister.Persister` holds a server's persisted Raft state and
  snapshot. `save(raftstate, snapshot)` stores both as one atomic step;
  `read_raft_state()`, `read_snapshot()`, `raft_state_size()`,
  `snapshot_size()` and `copy()` read them back or duplicate them.
- `quorumkv.messages` has the log `Entry`, the `ApplyMsg` handed to the
  service, the `Role` enum (`FOLLOWER`, `CANDIDATE`, `LEADER`), the RPC
  records (`RequestVoteArgs`/`Reply`, `AppendEntriesArgs`/`Reply`,
  `InstallSnapshotArgs`/`Reply`) and `random_election_timeout(rng)`, which
  returns a timeout between 450 and 949 milliseconds.
- `quorumkv.core.RaftCore` is the state of one peer and its RPC handlers:
  `request_vote(args)`, `append_entries(args)` (with fast log backup hints)
  and `install_snapshot(args)`, each returning the reply record. It also has
  `start(command)`, `get_state()`, `snapshot(index, data)`, `persist()`,
  `read_persist(data)` and `describe()`. State is saved with `pickle`.
- `quorumkv.raft.Raft` is a running peer built on `RaftCore`: an election
  ticker, leader heartbeats and replication, InstallSnapshot for lagging
  followers, and `commit_checker`, which delivers committed entries in index
  order. `kill()` stops its threads and `killed()` reports whether it was
  stopped.
- `quorumkv.ctrler_types` defines `Config` (ten shards, `NSHARDS`; config 0
  has every shard on group 0) and the controller RPC records.
  `quorumkv.ctrler_client.CtrlerClerk` offers `query(num)` (`-1` for the
  latest), `join(servers)`, `leave(gids)` and `move(shard, gid)`.
- `quorumkv.kv_types` defines the `Err` codes and the key/value RPC records.
  `quorumkv.kv_client.KVClerk` offers `get`, `put` and `append`;
  `key2shard(key)` maps a key to its shard by its first byte.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Using the persister

```python
from quorumkv.persister import Persister

ps = Persister()
ps.save(b"state", b"snap")
assert ps.read_raft_state() == b"state"
assert ps.snapshot_size() == 4
fresh = ps.copy()
```

## Starting a peer

A `Raft` peer takes one endpoint per server (any object with
`call(method, args)` that returns the reply, or `None` when the message is
lost), its own index, a `Persister`, and a sink with a `put` method, such as
a `queue.Queue`, on which committed entries arrive as `ApplyMsg` values.
Peers are called with the method names `"Raft.RequestVote"`,
`"Raft.AppendEntries"` and `"Raft.InstallSnapshot"`; an endpoint should
route these to the receiving peer's `request_vote`, `append_entries` and
`install_snapshot`.

```python
import queue
from quorumkv.raft import Raft
from quorumkv.persister import Persister

apply_ch = queue.Queue()
rf = Raft(peers, 0, Persister(), apply_ch)   # peers: your endpoints
index, term, is_leader = rf.start("command")
term, is_leader = rf.get_state()
msg = apply_ch.get()                          # an ApplyMsg once committed
rf.snapshot(msg.command_index, b"service state")
rf.kill()
```

## Clerks

`CtrlerClerk` and `KVClerk` try each server in turn and retry every 100
milliseconds until one answers, forever. The controller clerk calls
`"ShardCtrler.Query"`, `"ShardCtrler.Join"`, `"ShardCtrler.Leave"` and
`"ShardCtrler.Move"`; the key/value clerk calls `"ShardKV.Get"` and
`"ShardKV.PutAppend"` on endpoints produced by its `make_end(name)` and
refreshes its `Config` from the controller on `ErrWrongGroup` or failure.

```python
from quorumkv.kv_client import key2shard

key2shard("a")   # 97 % 10 == 7
key2shard("")    # 0
```

## What it does not do

- There is no network transport: you provide the endpoint objects.
- There is no shard controller server and no sharded key/value server; the
  package has only the clerks that talk to them and the records they
  exchange.
- There is no command-line program.