"""The Raft peer state machine: persistence, snapshots and RPC handlers."""

from __future__ import annotations

import pickle
import random
import threading
import time
from typing import Any, Protocol

from quorumkv.messages import (
    AppendEntriesArgs,
    AppendEntriesReply,
    ApplyMsg,
    Entry,
    InstallSnapshotArgs,
    InstallSnapshotReply,
    RequestVoteArgs,
    RequestVoteReply,
    Role,
    logger,
    random_election_timeout,
)
from quorumkv.persister import Persister


class ApplySink(Protocol):
    """Where committed commands and installed snapshots are delivered."""

    def put(self, item: ApplyMsg) -> None: ...


class RaftCore:
    """The state of one Raft peer and the handlers that change it.

    Log indexes come in two kinds: a virtual index counts from the start of
    history, a real index counts into ``log``, whose slot 0 holds the entry
    at ``last_included_index``, the last one covered by the snapshot.
    """

    def __init__(
        self,
        me: int,
        npeers: int,
        persister: Persister,
        apply_ch: ApplySink,
    ) -> None:
        self._lock = threading.Lock()
        self.cond_apply = threading.Condition(self._lock)
        self.me = me
        self.npeers = npeers
        self.persister = persister
        self.apply_ch = apply_ch

        self.current_term = 0
        self.voted_for = -1
        self.log: list[Entry] = [Entry(term=0)]

        self.next_index = [0] * npeers
        self.match_index = [0] * npeers
        self.commit_index = 0
        self.last_applied = 0
        self.role = Role.FOLLOWER

        self.snapshot_data = b""
        self.last_included_index = 0
        self.last_included_term = 0

        self._rng = random.Random(me)
        self.vote_deadline = 0.0
        self.heart_deadline = time.monotonic()
        self._heart_wakeup = threading.Event()
        self.reset_vote_timer()

        self._read_snapshot(persister.read_snapshot())
        self.read_persist(persister.read_raft_state())

        self.next_index = [self.virtual_index(len(self.log))] * npeers

    # -- helpers; the caller holds the lock -------------------------------

    def real_index(self, virtual_index: int) -> int:
        return virtual_index - self.last_included_index

    def virtual_index(self, real_index: int) -> int:
        return real_index + self.last_included_index

    def _entry(self, virtual_index: int) -> Entry:
        ridx = self.real_index(virtual_index)
        if not 0 <= ridx < len(self.log):
            raise IndexError(
                f"log index {virtual_index} outside "
                f"[{self.last_included_index}, {self.virtual_index(len(self.log))})"
            )
        return self.log[ridx]

    def reset_vote_timer(self) -> None:
        """Push the election deadline a fresh random timeout into the future."""
        timeout_ms = random_election_timeout(self._rng)
        self.vote_deadline = time.monotonic() + timeout_ms / 1000.0

    def _reset_heart_timer(self, ms: int) -> None:
        self.heart_deadline = time.monotonic() + ms / 1000.0
        self._heart_wakeup.set()

    def persist(self) -> None:
        """Save term, vote, log and snapshot bounds together with the snapshot."""
        state = pickle.dumps(
            (
                self.voted_for,
                self.current_term,
                [(e.term, e.cmd) for e in self.log],
                self.last_included_index,
                self.last_included_term,
            )
        )
        self.persister.save(state, self.snapshot_data)

    def read_persist(self, data: bytes) -> None:
        """Restore state saved by ``persist``; undecodable data is ignored."""
        if not data:
            return
        try:
            voted_for, term, raw_log, lii, lit = pickle.loads(data)
            log = [Entry(term=t, cmd=c) for t, c in raw_log]
            if not all(isinstance(v, int) for v in (voted_for, term, lii, lit)):
                raise ValueError("bad field type")
        except Exception:  # noqa: BLE001 - any decode failure leaves state alone
            logger.debug("server %s readPersist failed", self.me)
            return
        self.voted_for = voted_for
        self.current_term = term
        self.log = log
        self.last_included_index = lii
        self.last_included_term = lit
        self.commit_index = lii
        self.last_applied = lii
        logger.debug("server %s readPersist succeeded", self.me)

    def _read_snapshot(self, data: bytes) -> None:
        if not data:
            logger.debug("server %s has no snapshot to read", self.me)
            return
        self.snapshot_data = data

    # -- public entry points ----------------------------------------------

    def get_state(self) -> tuple[int, bool]:
        """Return the current term and whether this peer believes it leads."""
        with self._lock:
            return self.current_term, self.role == Role.LEADER

    def describe(self) -> str:
        return (
            f"raft{self.me}:{{currentTerm={self.current_term}, "
            f"role={int(self.role)}, votedFor={self.voted_for}}}"
        )

    def snapshot(self, index: int, snapshot: bytes) -> None:
        """Drop the log through ``index``, which the service has snapshotted."""
        with self._lock:
            if self.commit_index < index or index <= self.last_included_index:
                logger.debug(
                    "server %s refused snapshot at %s (commit=%s, lastIncluded=%s)",
                    self.me, index, self.commit_index, self.last_included_index,
                )
                return
            self.snapshot_data = snapshot
            ridx = self.real_index(index)
            self.last_included_term = self.log[ridx].term
            self.log = self.log[ridx:]
            self.last_included_index = index
            if self.last_applied < index:
                self.last_applied = index
            self.persist()

    def start(self, command: Any) -> tuple[int, int, bool]:
        """Append ``command`` if leader; return (index, term, is_leader)."""
        with self._lock:
            if self.role != Role.LEADER:
                return -1, -1, False
            self.log.append(Entry(term=self.current_term, cmd=command))
            self.persist()
            self._reset_heart_timer(1)
            return self.virtual_index(len(self.log) - 1), self.current_term, True

    def request_vote(self, args: RequestVoteArgs) -> RequestVoteReply:
        with self._lock:
            reply = RequestVoteReply()
            if args.term < self.current_term:
                reply.term = self.current_term
                logger.debug("server %s rejects %s: stale term", self.me, args)
                return reply

            if args.term > self.current_term:
                self.voted_for = -1
                self.current_term = args.term
                self.role = Role.FOLLOWER
                self.persist()

            if self.voted_for in (-1, args.candidate_id):
                last_term = self.log[-1].term
                last_index = self.virtual_index(len(self.log) - 1)
                if args.last_log_term > last_term or (
                    args.last_log_term == last_term and args.last_log_index >= last_index
                ):
                    self.current_term = args.term
                    reply.term = self.current_term
                    self.voted_for = args.candidate_id
                    self.role = Role.FOLLOWER
                    self.reset_vote_timer()
                    self.persist()
                    reply.vote_granted = True
                    logger.debug("server %s grants vote: %s", self.me, args)
                    return reply
                logger.debug("server %s rejects %s: log not up to date", self.me, args)
            else:
                logger.debug("server %s rejects %s: already voted", self.me, args)

            reply.term = self.current_term
            reply.vote_granted = False
            return reply

    def append_entries(self, args: AppendEntriesArgs) -> AppendEntriesReply:
        with self._lock:
            reply = AppendEntriesReply()
            if args.term < self.current_term:
                reply.term = self.current_term
                reply.success = False
                return reply

            self.reset_vote_timer()

            if args.term > self.current_term:
                self.current_term = args.term
                self.voted_for = -1
                self.role = Role.FOLLOWER
                self.persist()

            end = self.virtual_index(len(self.log))
            conflict = False
            if args.prev_log_index >= end:
                reply.xterm = -1
                reply.xlen = end
                conflict = True
            elif self._entry(args.prev_log_index).term != args.prev_log_term:
                reply.xterm = self._entry(args.prev_log_index).term
                i = args.prev_log_index
                while i > self.last_included_index and self._entry(i).term == reply.xterm:
                    i -= 1
                reply.xindex = i + 1
                reply.xlen = end
                conflict = True

            if conflict:
                reply.term = self.current_term
                reply.success = False
                return reply

            base = self.real_index(args.prev_log_index) + 1
            for idx, entry in enumerate(args.entries):
                ridx = base + idx
                if ridx < len(self.log) and self.log[ridx].term != entry.term:
                    self.log = self.log[:ridx] + list(args.entries[idx:])
                    break
                if ridx == len(self.log):
                    self.log.extend(args.entries[idx:])
                    break

            self.persist()
            reply.success = True
            reply.term = self.current_term

            if args.leader_commit > self.commit_index:
                self.commit_index = min(
                    args.leader_commit, self.virtual_index(len(self.log) - 1)
                )
                self.cond_apply.notify()
            return reply

    def install_snapshot(self, args: InstallSnapshotArgs) -> InstallSnapshotReply:
        with self._lock:
            reply = InstallSnapshotReply()
            if args.term < self.current_term:
                reply.term = self.current_term
                return reply

            if args.term > self.current_term:
                self.current_term = args.term
                self.voted_for = -1

            self.role = Role.FOLLOWER
            self.reset_vote_timer()

            keep_from = next(
                (
                    ridx
                    for ridx, entry in enumerate(self.log)
                    if self.virtual_index(ridx) == args.last_included_index
                    and entry.term == args.last_included_term
                ),
                None,
            )
            msg = ApplyMsg(
                snapshot_valid=True,
                snapshot=args.data,
                snapshot_term=args.last_included_term,
                snapshot_index=args.last_included_index,
            )
            if keep_from is not None:
                self.log = self.log[keep_from:]
            else:
                self.log = [Entry(term=self.last_included_term, cmd=args.last_included_cmd)]

            self.snapshot_data = args.data
            self.last_included_index = args.last_included_index
            self.last_included_term = args.last_included_term
            if self.commit_index < args.last_included_index:
                self.commit_index = args.last_included_index
            if self.last_applied < args.last_included_index:
                self.last_applied = args.last_included_index

            reply.term = self.current_term
            self.apply_ch.put(msg)
            self.persist()
            return reply