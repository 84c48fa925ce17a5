"""Sharded key/value RPC payloads and error codes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Err(str, Enum):
    OK = "OK"
    NO_KEY = "ErrNoKey"
    WRONG_GROUP = "ErrWrongGroup"
    WRONG_LEADER = "ErrWrongLeader"


@dataclass
class PutAppendArgs:
    key: str = ""
    value: str = ""
    op: str = "Put"


@dataclass
class PutAppendReply:
    err: Err = Err.OK


@dataclass
class GetArgs:
    key: str = ""


@dataclass
class GetReply:
    err: Err = Err.OK
    value: str = ""