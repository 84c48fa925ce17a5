"""Raft roles, log entries, apply messages and RPC payloads."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

logger = logging.getLogger("quorumkv")

HEARTBEAT_TIMEOUT = 101
ELECT_TIMEOUT_BASE = 450
ELECT_TIMEOUT_SPREAD = 500


class Role(IntEnum):
    FOLLOWER = 0
    CANDIDATE = 1
    LEADER = 2


@dataclass
class ApplyMsg:
    """A committed command or an installed snapshot handed to the service."""

    command_valid: bool = False
    command: Any = None
    command_index: int = 0
    snapshot_valid: bool = False
    snapshot: bytes = b""
    snapshot_term: int = 0
    snapshot_index: int = 0


@dataclass
class Entry:
    term: int = 0
    cmd: Any = None


@dataclass
class RequestVoteArgs:
    term: int = 0
    candidate_id: int = 0
    last_log_index: int = 0
    last_log_term: int = 0


@dataclass
class RequestVoteReply:
    term: int = 0
    vote_granted: bool = False


@dataclass
class AppendEntriesArgs:
    term: int = 0
    leader_id: int = 0
    prev_log_index: int = 0
    prev_log_term: int = 0
    entries: list[Entry] = field(default_factory=list)
    leader_commit: int = 0


@dataclass
class AppendEntriesReply:
    """Reply to AppendEntries, with the fast-backup hints xterm, xindex, xlen."""

    term: int = 0
    success: bool = False
    xterm: int = 0
    xindex: int = 0
    xlen: int = 0


@dataclass
class InstallSnapshotArgs:
    term: int = 0
    leader_id: int = 0
    last_included_index: int = 0
    last_included_term: int = 0
    data: bytes = b""
    last_included_cmd: Any = None


@dataclass
class InstallSnapshotReply:
    term: int = 0


def random_election_timeout(rng: random.Random) -> int:
    """Return an election timeout in milliseconds drawn from ``rng``."""
    return ELECT_TIMEOUT_BASE + int(rng.random() * float(ELECT_TIMEOUT_SPREAD))