"""Sequential model of a single versioned key, used to check histories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from .rpc import Err

GET = 0
PUT = 1
INVALID = "<invalid>"


@dataclass(frozen=True)
class KvInput:
    """Input of a recorded operation: ``op`` is GET or PUT."""

    op: int = GET
    key: str = ""
    value: str = ""
    version: int = 0


@dataclass(frozen=True)
class KvOutput:
    """Output of a recorded operation."""

    value: str = ""
    version: int = 0
    err: str = ""


@dataclass(frozen=True)
class KvState:
    """Value and version held by one key."""

    value: str = ""
    version: int = 0


@dataclass(frozen=True)
class Operation:
    """A client operation with its call and return times."""

    input: KvInput
    output: KvOutput
    call_time: int = 0
    return_time: int = 0
    client_id: int = 0


def partition(history: Iterable[Operation]) -> list[list[Operation]]:
    """Split a history by key, keys in sorted order, operations in their order."""
    by_key: dict[str, list[Operation]] = {}
    for op in history:
        by_key.setdefault(op.input.key, []).append(op)
    return [by_key[key] for key in sorted(by_key)]


def init_state() -> KvState:
    """State of a key before any operation."""
    return KvState("", 0)


def step(state: KvState, inp: KvInput, out: KvOutput) -> tuple[bool, Any]:
    """Apply one operation; return whether it is legal and the next state."""
    if inp.op == GET:
        return out.value == state.value, state
    if inp.op == PUT:
        if state.version == inp.version:
            return out.err in (Err.OK, Err.MAYBE), KvState(inp.value, state.version + 1)
        return out.err in (Err.VERSION, Err.MAYBE), state
    return False, INVALID


def describe_operation(inp: KvInput, out: KvOutput) -> str:
    """Human-readable form of one operation."""
    if inp.op == GET:
        return f"get('{inp.key}') -> ('{out.value}', '{out.version}', '{str(out.err)}')"
    if inp.op == PUT:
        return f"put('{inp.key}', '{inp.value}', '{inp.version}') -> ('{str(out.err)}')"
    return INVALID