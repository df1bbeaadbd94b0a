"""Encoding of values into self-contained bytes for RPC and persistence.

Every encoded value is a fresh copy: nothing decoded shares references with
what was encoded. Dataclass fields whose names start with an underscore are
treated as private and are not transmitted; the encoder reports them.
"""

from __future__ import annotations

import base64
import dataclasses
import enum
import io
import json
import logging
import threading
from typing import Any

_log = logging.getLogger(__name__)

_lock = threading.Lock()
_error_count = 0
_checked: set[type] = set()
_name_to_type: dict[str, type] = {}
_type_to_name: dict[type, str] = {}

_MAX_DEFAULT_DEPTH = 3


def error_count() -> int:
    """Number of problems reported so far."""
    with _lock:
        return _error_count


def _bump() -> int:
    """Increment the error count; the caller holds the lock. Returns the old count."""
    global _error_count
    old = _error_count
    _error_count += 1
    return old


def _is_instance_of_dataclass(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _is_registerable(cls: type) -> bool:
    return dataclasses.is_dataclass(cls) or issubclass(cls, enum.Enum)


def _register_type(name: str, cls: type) -> None:
    with _lock:
        existing = _name_to_type.get(name)
        if existing is not None and existing is not cls:
            raise ValueError(
                f"labgob: registering duplicate types for {name!r}: {existing!r} != {cls!r}"
            )
        known = _type_to_name.get(cls)
        if known is not None and known != name:
            raise ValueError(
                f"labgob: registering duplicate names for {cls!r}: {known!r} != {name!r}"
            )
        _name_to_type[name] = cls
        _type_to_name[cls] = name


def _name_of(cls: type) -> str:
    with _lock:
        name = _type_to_name.get(cls)
    if name is None:
        name = f"{cls.__module__}.{cls.__qualname__}"
        _register_type(name, cls)
    return name


def _lookup(name: str) -> type:
    with _lock:
        cls = _name_to_type.get(name)
    if cls is None:
        raise ValueError(f"labgob: type not registered for name {name!r}")
    return cls


def _check_type(cls: type) -> None:
    with _lock:
        if cls in _checked:
            return
        _checked.add(cls)
    if not dataclasses.is_dataclass(cls):
        return
    for f in dataclasses.fields(cls):
        if f.name.startswith("_"):
            _log.error(
                "labgob error: private field %s of %s in RPC or persist/snapshot "
                "will break your Raft",
                f.name,
                cls.__name__,
            )
            with _lock:
                _bump()


def _check_value(value: Any) -> None:
    _check_type(type(value))
    if _is_instance_of_dataclass(value):
        for f in dataclasses.fields(value):
            _check_value(getattr(value, f.name, None))
    elif isinstance(value, dict):
        for key, item in value.items():
            _check_value(key)
            _check_value(item)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            _check_value(item)


def _check_default(value: Any, depth: int = 1, name: str = "") -> None:
    """Warn when decoding into a target that already holds non-default data."""
    if value is None or depth > _MAX_DEFAULT_DEPTH:
        return
    if _is_instance_of_dataclass(value):
        for f in dataclasses.fields(value):
            inner = f"{name}.{f.name}" if name else f.name
            _check_default(getattr(value, f.name, None), depth + 1, inner)
    elif isinstance(value, (bool, int, float, str)) and value:
        with _lock:
            if _bump() < 1:
                what = name or type(value).__name__
                _log.warning(
                    "labgob warning: Decoding into a non-default variable/field %s "
                    "may not work",
                    what,
                )


def _to_wire(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, enum.Enum):
        return {"k": "enum", "n": _name_of(type(value)), "v": _to_wire(value.value)}
    if isinstance(value, bool):
        return bool(value)
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        return float(value)
    if isinstance(value, str):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return {"k": "bytes", "v": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, list):
        return [_to_wire(item) for item in value]
    if isinstance(value, tuple):
        return {"k": "tuple", "v": [_to_wire(item) for item in value]}
    if isinstance(value, dict):
        return {"k": "dict", "v": [[_to_wire(k), _to_wire(v)] for k, v in value.items()]}
    if isinstance(value, frozenset):
        return {"k": "frozenset", "v": [_to_wire(item) for item in value]}
    if isinstance(value, set):
        return {"k": "set", "v": [_to_wire(item) for item in value]}
    if _is_instance_of_dataclass(value):
        fields = {
            f.name: _to_wire(getattr(value, f.name))
            for f in dataclasses.fields(value)
            if not f.name.startswith("_")
        }
        return {"k": "obj", "n": _name_of(type(value)), "f": fields}
    raise TypeError(f"labgob: cannot encode value of type {type(value).__name__}")


def _build_dataclass(cls: type, data: dict[str, Any]) -> Any:
    obj = cls.__new__(cls)
    for f in dataclasses.fields(cls):
        if f.name in data:
            item = _from_wire(data[f.name])
        elif f.default is not dataclasses.MISSING:
            item = f.default
        elif f.default_factory is not dataclasses.MISSING:
            item = f.default_factory()
        else:
            continue
        object.__setattr__(obj, f.name, item)
    return obj


def _from_wire(wire: Any) -> Any:
    if isinstance(wire, list):
        return [_from_wire(item) for item in wire]
    if not isinstance(wire, dict):
        return wire
    kind = wire.get("k")
    try:
        if kind == "tuple":
            return tuple(_from_wire(item) for item in wire["v"])
        if kind == "bytes":
            return base64.b64decode(wire["v"])
        if kind == "dict":
            return {_from_wire(k): _from_wire(v) for k, v in wire["v"]}
        if kind == "set":
            return {_from_wire(item) for item in wire["v"]}
        if kind == "frozenset":
            return frozenset(_from_wire(item) for item in wire["v"])
        if kind == "enum":
            return _lookup(wire["n"])(_from_wire(wire["v"]))
        if kind == "obj":
            return _build_dataclass(_lookup(wire["n"]), wire["f"])
    except (KeyError, TypeError) as exc:
        raise ValueError(f"labgob: malformed {kind} value") from exc
    raise ValueError(f"labgob: unknown value kind {kind!r}")


def _fill(target: Any, value: Any) -> None:
    if _is_instance_of_dataclass(target):
        if type(value) is not type(target):
            raise TypeError(
                f"labgob: cannot decode {type(value).__name__} into {type(target).__name__}"
            )
        for f in dataclasses.fields(target):
            if hasattr(value, f.name):
                object.__setattr__(target, f.name, getattr(value, f.name))
    elif isinstance(target, dict):
        if not isinstance(value, dict):
            raise TypeError(f"labgob: cannot decode {type(value).__name__} into dict")
        target.clear()
        target.update(value)
    elif isinstance(target, list):
        if not isinstance(value, list):
            raise TypeError(f"labgob: cannot decode {type(value).__name__} into list")
        target[:] = value
    elif isinstance(target, set):
        if not isinstance(value, (set, frozenset)):
            raise TypeError(f"labgob: cannot decode {type(value).__name__} into set")
        target.clear()
        target.update(value)
    else:
        raise TypeError(
            "labgob: decode_into needs a dataclass instance, dict, list or set"
        )


class LabEncoder:
    """Writes encoded values, one after another, to a binary stream."""

    def __init__(self, writer: Any) -> None:
        self._writer = writer

    def encode(self, value: Any) -> None:
        """Encode ``value`` and write it to the stream."""
        _check_value(value)
        wire = _to_wire(value)
        line = json.dumps(wire, separators=(",", ":"), ensure_ascii=True)
        self._writer.write(line.encode("ascii") + b"\n")


class LabDecoder:
    """Reads values written by a :class:`LabEncoder` from a binary stream."""

    def __init__(self, reader: Any) -> None:
        self._reader = reader

    def decode(self) -> Any:
        """Read and return the next value; raise EOFError at the end."""
        line = self._reader.readline()
        if not line:
            raise EOFError("labgob: no more values to decode")
        try:
            wire = json.loads(line)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValueError("labgob: corrupt encoded value") from exc
        return _from_wire(wire)

    def decode_into(self, target: Any) -> Any:
        """Read the next value into the mutable ``target`` and return it."""
        _check_value(target)
        _check_default(target)
        _fill(target, self.decode())
        return target


def register(value: Any) -> None:
    """Make a dataclass or enum type (or an instance's type) decodable."""
    cls = value if isinstance(value, type) else type(value)
    if isinstance(value, type):
        _check_type(cls)
    else:
        _check_value(value)
    if _is_registerable(cls):
        _name_of(cls)


def register_name(name: str, value: Any) -> None:
    """Register a dataclass or enum type under an explicit name."""
    cls = value if isinstance(value, type) else type(value)
    if not _is_registerable(cls):
        raise TypeError(f"labgob: cannot register type {cls.__name__}")
    if isinstance(value, type):
        _check_type(cls)
    else:
        _check_value(value)
    _register_type(name, cls)


def encode_value(value: Any) -> bytes:
    """Encode a single value into bytes."""
    buf = io.BytesIO()
    LabEncoder(buf).encode(value)
    return buf.getvalue()


def decode_value(data: bytes) -> Any:
    """Decode the first value held in ``data``."""
    return LabDecoder(io.BytesIO(data)).decode()