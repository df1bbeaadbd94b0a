"""Messages exchanged by the MapReduce coordinator and workers, and their transport.

Calls travel over a UNIX-domain stream socket. A request is the pair
``(rpcname, args)`` encoded with labgob; the answer is ``(True, reply)`` or
``(False, message)`` when the handler failed. ``rpcname`` has the form
``"Receiver.method"``, where ``Receiver`` is the class name of the served
object and ``method`` one of its public methods taking a single argument.
"""

from __future__ import annotations

import enum
import os
import socket
import socketserver
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

from . import labgob
from .labrpc import RPCError


class TaskType(enum.IntEnum):
    """Kind of work a task asks for."""

    MAP = 0
    REDUCE = 1
    WAIT = 2


class TaskStatus(enum.IntEnum):
    """Progress of a task as seen by the coordinator."""

    IDLE = 0
    IN_PROGRESS = 1
    FAIL = 2
    COMPLETED = 3


@dataclass
class KeyValue:
    """One pair emitted by a map function."""

    key: str = ""
    value: str = ""


@dataclass
class Task:
    """A map or reduce task handed to a worker."""

    id: int = 0
    files: str = ""
    reduce_files: list[str] = field(default_factory=list)
    status: TaskStatus = TaskStatus.IDLE
    fresh_time: float = 0.0
    task_type: TaskType = TaskType.MAP


@dataclass
class TaskArgs:
    """Request for a task."""


@dataclass
class TaskReply:
    """A task to run, or none; ``finished`` tells the worker to exit."""

    assigned_task: Optional[Task] = None
    finished: bool = False
    n_reduce: int = 0


@dataclass
class ReportArgs:
    """Report that a task has been completed."""

    task_id: int = 0
    task_type: TaskType = TaskType.MAP


@dataclass
class HealthArgs:
    """Heartbeat for a task that is still running."""

    task_id: int = 0
    task_type: TaskType = TaskType.MAP


@dataclass
class ExampleArgs:
    """Argument of the example call."""

    x: int = 0


@dataclass
class ExampleReply:
    """Reply of the example call."""

    y: int = 0


for _cls in (
    TaskType,
    TaskStatus,
    KeyValue,
    Task,
    TaskArgs,
    TaskReply,
    ReportArgs,
    HealthArgs,
    ExampleArgs,
    ExampleReply,
):
    labgob.register(_cls)


def coordinator_sock() -> str:
    """A per-user UNIX-domain socket name in /var/tmp for the coordinator."""
    return f"/var/tmp/5840-mr-{os.getuid()}"


def _dispatch(receiver: Any, rpcname: str, args: Any) -> Any:
    service, sep, method_name = rpcname.rpartition(".")
    expected = type(receiver).__name__
    if not sep or service != expected:
        raise LookupError(
            f"unknown service {service!r} in {rpcname!r}; expecting {expected!r}"
        )
    if not method_name or method_name.startswith("_"):
        raise LookupError(f"unknown method {method_name!r} in {rpcname!r}")
    method = getattr(receiver, method_name, None)
    if not callable(method):
        raise LookupError(f"unknown method {method_name!r} in {rpcname!r}")
    return method(args)


class _Handler(socketserver.StreamRequestHandler):
    def handle(self) -> None:
        decoder = labgob.LabDecoder(self.rfile)
        encoder = labgob.LabEncoder(self.wfile)
        while True:
            try:
                request = decoder.decode()
            except EOFError:
                return
            except ValueError as exc:
                encoder.encode((False, f"bad request: {exc}"))
                return
            if not (
                isinstance(request, tuple)
                and len(request) == 2
                and isinstance(request[0], str)
            ):
                encoder.encode((False, "bad request: expected (rpcname, args)"))
                return
            rpcname, args = request
            try:
                reply = _dispatch(self.server.receiver, rpcname, args)
                data = labgob.encode_value((True, reply))
            except Exception as exc:
                data = labgob.encode_value((False, f"{type(exc).__name__}: {exc}"))
            self.wfile.write(data)


class _UnixServer(socketserver.ThreadingUnixStreamServer):
    daemon_threads = True
    block_on_close = False

    def __init__(self, sockname: str, receiver: Any) -> None:
        self.receiver = receiver
        super().__init__(sockname, _Handler)


class RPCServer:
    """Serves the public methods of ``receiver`` on a UNIX-domain socket."""

    def __init__(self, receiver: Any, sockname: Optional[str] = None) -> None:
        self.sockname = sockname or coordinator_sock()
        try:
            os.remove(self.sockname)
        except FileNotFoundError:
            pass
        self._server = _UnixServer(self.sockname, receiver)
        self._closed = False
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def close(self) -> None:
        """Stop serving and remove the socket file."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._server.shutdown()
        self._server.server_close()
        self._thread.join()
        try:
            os.remove(self.sockname)
        except FileNotFoundError:
            pass

    def __enter__(self) -> "RPCServer":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()


def serve(receiver: Any, sockname: Optional[str] = None) -> RPCServer:
    """Start serving ``receiver`` in the background and return the server."""
    return RPCServer(receiver, sockname)


def call(rpcname: str, args: Any, sockname: Optional[str] = None) -> Any:
    """Send one call and return the reply.

    Raises OSError when the socket cannot be reached and RPCError when the
    handler failed or the connection closed without an answer.
    """
    sockname = sockname or coordinator_sock()
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.connect(sockname)
        with sock.makefile("rwb") as stream:
            labgob.LabEncoder(stream).encode((rpcname, args))
            stream.flush()
            try:
                answer = labgob.LabDecoder(stream).decode()
            except EOFError as exc:
                raise RPCError(f"{rpcname}: connection closed without a reply") from exc
    try:
        ok, payload = answer
    except (TypeError, ValueError) as exc:
        raise RPCError(f"{rpcname}: malformed reply") from exc
    if not ok:
        raise RPCError(f"{rpcname}: {payload}")
    return payload