import queue
import time

import pytest

from quorumkv.core import RaftCore
from quorumkv.messages import (
    AppendEntriesArgs,
    Entry,
    InstallSnapshotArgs,
    RequestVoteArgs,
    Role,
)
from quorumkv.persister import Persister


def make_core(me=0, npeers=3, persister=None):
    return RaftCore(me, npeers, persister or Persister(), queue.Queue())


def make_leader(core, term=1):
    core.current_term = term
    core.role = Role.LEADER
    return core


def test_fresh_core_state():
    core = make_core()
    assert core.get_state() == (0, False)
    assert core.log == [Entry(term=0)]
    assert core.next_index == [1, 1, 1]


def test_index_conversion_round_trip():
    core = make_core()
    core.last_included_index = 7
    assert core.real_index(core.virtual_index(3)) == 3
    assert core.virtual_index(0) == 7


def test_start_on_follower_refused():
    core = make_core()
    assert core.start("x") == (-1, -1, False)
    assert len(core.log) == 1


def test_start_on_leader_appends_and_persists():
    persister = Persister()
    core = make_leader(make_core(persister=persister), term=2)
    assert core.start("a") == (1, 2, True)
    assert core.start("b") == (2, 2, True)
    restored = make_core(persister=persister)
    assert restored.current_term == 2
    assert [e.cmd for e in restored.log[1:]] == ["a", "b"]


def test_request_vote_granted_then_denied_to_other():
    core = make_core(me=0)
    reply = core.request_vote(RequestVoteArgs(term=1, candidate_id=1))
    assert reply.vote_granted
    assert reply.term == 1
    assert core.voted_for == 1
    other = core.request_vote(RequestVoteArgs(term=1, candidate_id=2))
    assert not other.vote_granted


def test_request_vote_stale_term():
    core = make_core()
    core.current_term = 5
    reply = core.request_vote(RequestVoteArgs(term=3, candidate_id=1))
    assert not reply.vote_granted
    assert reply.term == 5


def test_request_vote_stale_log_denied():
    core = make_core()
    core.log.append(Entry(term=2, cmd="x"))
    core.current_term = 2
    reply = core.request_vote(
        RequestVoteArgs(term=3, candidate_id=1, last_log_index=5, last_log_term=1)
    )
    assert not reply.vote_granted
    assert core.current_term == 3


def test_append_entries_stale_term_rejected():
    core = make_core()
    core.current_term = 4
    reply = core.append_entries(AppendEntriesArgs(term=2))
    assert not reply.success
    assert reply.term == 4


def test_append_entries_appends_and_commits():
    core = make_core()
    entries = [Entry(term=1, cmd="a"), Entry(term=1, cmd="b")]
    reply = core.append_entries(
        AppendEntriesArgs(term=1, leader_id=1, prev_log_index=0, entries=entries,
                          leader_commit=10)
    )
    assert reply.success
    assert core.log[1:] == entries
    assert core.commit_index == 2
    assert core.role == Role.FOLLOWER


def test_append_entries_duplicate_is_idempotent():
    core = make_core()
    args = AppendEntriesArgs(term=1, prev_log_index=0, entries=[Entry(1, "a")])
    core.append_entries(args)
    core.append_entries(args)
    assert core.log[1:] == [Entry(1, "a")]


def test_append_entries_missing_prev_reports_length():
    core = make_core()
    reply = core.append_entries(AppendEntriesArgs(term=1, prev_log_index=4, prev_log_term=1))
    assert not reply.success
    assert reply.xterm == -1
    assert reply.xlen == 1


def test_append_entries_term_mismatch_reports_xterm():
    core = make_core()
    core.log += [Entry(1, "a"), Entry(2, "b"), Entry(2, "c")]
    core.current_term = 2
    reply = core.append_entries(AppendEntriesArgs(term=3, prev_log_index=3, prev_log_term=3))
    assert not reply.success
    assert reply.xterm == 2
    assert reply.xindex == 2
    assert reply.xlen == len(core.log)


def test_append_entries_conflict_truncates():
    core = make_core()
    core.log += [Entry(1, "a"), Entry(1, "b")]
    reply = core.append_entries(
        AppendEntriesArgs(term=2, prev_log_index=1, prev_log_term=1, entries=[Entry(2, "z")])
    )
    assert reply.success
    assert core.log[1:] == [Entry(1, "a"), Entry(2, "z")]


def test_snapshot_refused_beyond_commit():
    core = make_leader(make_core())
    core.start("a")
    core.snapshot(1, b"snap")
    assert core.last_included_index == 0
    assert core.persister.read_snapshot() == b""


def test_snapshot_trims_log_and_survives_restart():
    persister = Persister()
    core = make_leader(make_core(persister=persister))
    for cmd in ("a", "b", "c"):
        core.start(cmd)
    core.commit_index = 3
    core.snapshot(2, b"snap")
    assert core.last_included_index == 2
    assert [e.cmd for e in core.log] == ["b", "c"]
    assert core.last_applied == 2
    assert persister.read_snapshot() == b"snap"
    restored = make_core(persister=persister)
    assert restored.last_included_index == 2
    assert restored.commit_index == 2
    assert restored.snapshot_data == b"snap"
    assert restored.virtual_index(len(restored.log)) == 4


def test_install_snapshot_delivers_message():
    core = make_core()
    reply = core.install_snapshot(
        InstallSnapshotArgs(term=1, leader_id=1, last_included_index=5,
                            last_included_term=1, data=b"snap", last_included_cmd="x")
    )
    assert reply.term == 1
    msg = core.apply_ch.get_nowait()
    assert msg.snapshot_valid
    assert msg.snapshot_index == 5
    assert msg.snapshot == b"snap"
    assert [e.cmd for e in core.log] == ["x"]
    assert core.commit_index == 5
    assert core.last_applied == 5
    assert core.persister.read_snapshot() == b"snap"


def test_install_snapshot_stale_term():
    core = make_core()
    core.current_term = 3
    reply = core.install_snapshot(InstallSnapshotArgs(term=1, last_included_index=5))
    assert reply.term == 3
    assert core.apply_ch.empty()
    assert core.last_included_index == 0


def test_read_persist_ignores_garbage_and_empty():
    core = make_core()
    core.current_term = 4
    core.read_persist(b"not a state")
    core.read_persist(b"")
    assert core.current_term == 4


def test_reset_vote_timer_range():
    core = make_core()
    before = time.monotonic()
    core.reset_vote_timer()
    delta = core.vote_deadline - before
    assert 0.45 <= delta <= 0.951


def test_describe_mentions_term():
    core = make_core(me=2)
    core.current_term = 9
    assert "currentTerm=9" in core.describe()
    assert core.describe().startswith("raft2")


def test_append_entries_before_snapshot_raises():
    core = make_core()
    core.last_included_index = 5
    with pytest.raises(IndexError):
        core.append_entries(AppendEntriesArgs(term=1, prev_log_index=2, prev_log_term=1))