"""A running Raft peer: election timer, heartbeats, replication and apply loop."""

from __future__ import annotations

import copy
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from quorumkv.core import ApplySink, RaftCore
from quorumkv.messages import (
    HEARTBEAT_TIMEOUT,
    AppendEntriesArgs,
    ApplyMsg,
    InstallSnapshotArgs,
    RequestVoteArgs,
    Role,
    logger,
)
from quorumkv.persister import Persister


class PeerEnd(Protocol):
    """An RPC endpoint: returns the reply, or None if the call was lost."""

    def call(self, method: str, args: Any) -> Any | None: ...


@dataclass
class _VoteTally:
    count: int = 1
    lock: threading.Lock = field(default_factory=threading.Lock)


class Raft(RaftCore):
    """A Raft peer that runs its own election, heartbeat and apply threads.

    ``peers`` holds one endpoint per server, in the same order on every
    server; ``peers[me]`` is this server's own slot and is never called.
    """

    def __init__(
        self,
        peers: Sequence[PeerEnd],
        me: int,
        persister: Persister,
        apply_ch: ApplySink,
    ) -> None:
        super().__init__(me, len(peers), persister, apply_ch)
        self.peers = list(peers)
        self._dead = threading.Event()
        self._spawn(self._ticker)
        self._spawn(self.commit_checker)

    @staticmethod
    def _spawn(target: Callable[..., Any], *args: Any) -> None:
        threading.Thread(target=target, args=args, daemon=True).start()

    # -- lifecycle ---------------------------------------------------------

    def kill(self) -> None:
        """Stop this peer's background threads."""
        self._dead.set()
        with self._lock:
            self.cond_apply.notify_all()
        self._heart_wakeup.set()

    def killed(self) -> bool:
        return self._dead.is_set()

    # -- elections ---------------------------------------------------------

    def _ticker(self) -> None:
        while not self.killed():
            with self._lock:
                remaining = self.vote_deadline - time.monotonic()
            if remaining > 0:
                self._dead.wait(remaining)
                continue
            with self._lock:
                if self.role != Role.LEADER:
                    self._spawn(self.elect)
                self.reset_vote_timer()

    def elect(self) -> None:
        """Become a candidate in a new term and ask every peer for a vote."""
        with self._lock:
            self.current_term += 1
            self.role = Role.CANDIDATE
            self.voted_for = self.me
            logger.debug("server %s starts election for term %s", self.me, self.current_term)
            args = RequestVoteArgs(
                term=self.current_term,
                candidate_id=self.me,
                last_log_index=self.virtual_index(len(self.log) - 1),
                last_log_term=self.log[-1].term,
            )
            tally = _VoteTally()
            for server in range(len(self.peers)):
                if server != self.me:
                    self._spawn(self._collect_vote, server, args, tally)

    def _collect_vote(self, server: int, args: RequestVoteArgs, tally: _VoteTally) -> None:
        if not self._get_vote_answer(server, args):
            return
        majority = len(self.peers) // 2
        with tally.lock:
            if tally.count > majority:
                return
            tally.count += 1
            if tally.count <= majority:
                return
            with self._lock:
                if self.role == Role.FOLLOWER:
                    return
                logger.debug("server %s becomes leader", self.me)
                self.role = Role.LEADER
                end = self.virtual_index(len(self.log))
                self.next_index = [end] * len(self.peers)
                self.match_index = [self.last_included_index] * len(self.peers)
            self._spawn(self.send_heartbeats)

    def _get_vote_answer(self, server: int, args: RequestVoteArgs) -> bool:
        send_args = copy.copy(args)
        reply = self.peers[server].call("Raft.RequestVote", send_args)
        if reply is None:
            return False
        with self._lock:
            if send_args.term != self.current_term:
                return False
            if reply.term > self.current_term:
                self.current_term = reply.term
                self.voted_for = -1
                self.role = Role.FOLLOWER
                self.persist()
            return reply.vote_granted

    # -- replication -------------------------------------------------------

    def _wait_heart_timer(self) -> bool:
        while not self.killed():
            self._heart_wakeup.clear()
            with self._lock:
                remaining = self.heart_deadline - time.monotonic()
            if remaining <= 0:
                return True
            self._heart_wakeup.wait(remaining)
        return False

    def send_heartbeats(self) -> None:
        """Replicate to every follower on each heartbeat while leader."""
        while not self.killed():
            if not self._wait_heart_timer():
                return
            with self._lock:
                if self.role != Role.LEADER:
                    return
                for server in range(len(self.peers)):
                    if server == self.me:
                        continue
                    prev = self.next_index[server] - 1
                    if prev < self.last_included_index:
                        self._spawn(self._handle_install_snapshot, server)
                        continue
                    args = AppendEntriesArgs(
                        term=self.current_term,
                        leader_id=self.me,
                        prev_log_index=prev,
                        leader_commit=self.commit_index,
                    )
                    if self.virtual_index(len(self.log) - 1) > prev:
                        args.entries = self.log[self.real_index(prev + 1):]
                    args.prev_log_term = self._entry(prev).term
                    self._spawn(self._handle_append_entries, server, args)
                self._reset_heart_timer(HEARTBEAT_TIMEOUT)

    def _handle_install_snapshot(self, server: int) -> None:
        with self._lock:
            if self.role != Role.LEADER:
                return
            args = InstallSnapshotArgs(
                term=self.current_term,
                leader_id=self.me,
                last_included_index=self.last_included_index,
                last_included_term=self.last_included_term,
                data=self.snapshot_data,
                last_included_cmd=self.log[0].cmd,
            )
        reply = self.peers[server].call("Raft.InstallSnapshot", args)
        if reply is None:
            return
        with self._lock:
            if reply.term > self.current_term:
                self.current_term = reply.term
                self.role = Role.FOLLOWER
                self.voted_for = -1
                self.reset_vote_timer()
                self.persist()
                return
            self.next_index[server] = self.virtual_index(1)

    def _handle_append_entries(self, server: int, args: AppendEntriesArgs) -> None:
        reply = self.peers[server].call("Raft.AppendEntries", args)
        if reply is None:
            return
        with self._lock:
            if args.term != self.current_term:
                return

            if reply.success:
                new_match = args.prev_log_index + len(args.entries)
                if new_match > self.match_index[server]:
                    self.match_index[server] = new_match
                if new_match + 1 > self.next_index[server]:
                    self.next_index[server] = new_match + 1

                n = self.virtual_index(len(self.log) - 1)
                while n > self.commit_index:
                    count = 1 + sum(
                        1
                        for i in range(len(self.peers))
                        if i != self.me
                        and self.match_index[i] >= n
                        and self._entry(n).term == self.current_term
                    )
                    if count > len(self.peers) // 2:
                        break
                    n -= 1
                self.commit_index = n
                self.cond_apply.notify()
                return

            if reply.term > self.current_term:
                self.current_term = reply.term
                self.role = Role.FOLLOWER
                self.voted_for = -1
                self.reset_vote_timer()
                self.persist()
                return

            if reply.term != self.current_term or self.role != Role.LEADER:
                return

            if reply.xterm == -1:
                if self.last_included_index >= reply.xlen:
                    self._spawn(self._handle_install_snapshot, server)
                else:
                    self.next_index[server] = reply.xlen
                return

            i = max(self.next_index[server] - 1, self.last_included_index)
            while i > self.last_included_index and self._entry(i).term > reply.xterm:
                i -= 1

            if i == self.last_included_index and self._entry(i).term > reply.xterm:
                self._spawn(self._handle_install_snapshot, server)
            elif self._entry(i).term == reply.xterm:
                self.next_index[server] = i + 1
            elif reply.xindex <= self.last_included_index:
                self._spawn(self._handle_install_snapshot, server)
            else:
                self.next_index[server] = reply.xindex

    # -- applying ----------------------------------------------------------

    def commit_checker(self) -> None:
        """Deliver newly committed entries to the service, in index order."""
        while not self.killed():
            with self._lock:
                while self.commit_index <= self.last_applied:
                    if self.killed():
                        return
                    self.cond_apply.wait(0.1)
                pending = []
                for idx in range(self.last_applied + 1, self.commit_index + 1):
                    if idx <= self.last_included_index:
                        continue
                    entry = self._entry(idx)
                    pending.append(
                        ApplyMsg(
                            command_valid=True,
                            command=entry.cmd,
                            command_index=idx,
                            snapshot_term=entry.term,
                        )
                    )

            for msg in pending:
                with self._lock:
                    if msg.command_index != self.last_applied + 1:
                        continue
                self.apply_ch.put(msg)
                with self._lock:
                    if msg.command_index != self.last_applied + 1:
                        continue
                    self.last_applied = msg.command_index