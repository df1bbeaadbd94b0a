"""Argument, reply and error types shared by key/value clerks and servers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

Tversion = int


class Err(str, Enum):
    """Outcome of a key/value operation."""

    OK = "OK"
    NO_KEY = "ErrNoKey"
    VERSION = "ErrVersion"
    # Returned by a clerk only.
    MAYBE = "ErrMaybe"
    # Used by replicated and sharded services.
    WRONG_LEADER = "ErrWrongLeader"
    WRONG_GROUP = "ErrWrongGroup"

    def __str__(self) -> str:
        return self.value


@dataclass
class PutArgs:
    """Request to store ``value`` under ``key`` if ``version`` matches."""

    key: str = ""
    value: str = ""
    version: Tversion = 0


@dataclass
class PutReply:
    """Result of a put request."""

    err: Optional[Err] = None


@dataclass
class GetArgs:
    """Request for the value and version of ``key``."""

    key: str = ""


@dataclass
class GetReply:
    """Result of a get request."""

    value: str = ""
    version: Tversion = 0
    err: Optional[Err] = None