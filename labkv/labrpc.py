"""In-process RPC over a simulated network.

The network can lose requests and replies, delay messages, reorder replies
and disconnect particular hosts. Arguments and replies travel as labgob
bytes, so a handler never shares objects with its caller.

Typical use::

    net = Network()
    end = net.make_end("client-1")
    server = Server()
    server.add_service(Service(receiver))
    net.add_server("server-1", server)
    net.connect("client-1", "server-1")
    net.enable("client-1", True)
    reply = end.call("Receiver.method", args)

A handler is a public method of the receiver that takes one argument and
returns the reply. ``ClientEnd.call`` returns the reply, or raises
:class:`RPCError` when no reply arrived.
"""

from __future__ import annotations

import queue
import random
import threading
import time
import types
from typing import Any, Callable, Hashable, Optional

from . import labgob

SHORT_DELAY = 27  # ms
LONG_DELAY = 7000  # ms
MAX_DELAY = LONG_DELAY + 100

_POLL_INTERVAL = 0.1  # seconds between checks for a killed server

_CO_VARARGS = 0x04
_CO_VARKEYWORDS = 0x08


class RPCError(Exception):
    """No reply was received: the request or reply was lost, or the server is down."""


class ClientEnd:
    """A client end-point that talks to the one server it is connected to."""

    def __init__(self, network: "Network", endname: Hashable) -> None:
        self._network = network
        self._endname = endname

    @property
    def endname(self) -> Hashable:
        return self._endname

    def call(self, svc_meth: str, args: Any) -> Any:
        """Send ``args`` to ``"Service.method"`` and wait for the reply."""
        data = labgob.encode_value(args)
        reply = self._network._process(self._endname, svc_meth, data)
        return labgob.decode_value(reply)


class Network:
    """Holds the client ends and servers and decides the fate of each message."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reliable = True
        self._long_delays = False
        self._long_reordering = False
        self._ends: dict[Hashable, ClientEnd] = {}
        self._enabled: dict[Hashable, bool] = {}
        self._servers: dict[Hashable, Optional[Server]] = {}
        self._connections: dict[Hashable, Optional[Hashable]] = {}
        self._done = threading.Event()
        self._count = 0
        self._bytes = 0

    def __enter__(self) -> "Network":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        """Shut the network down; later calls fail at once."""
        self._done.set()

    def set_reliable(self, yes: bool) -> None:
        with self._lock:
            self._reliable = yes

    def is_reliable(self) -> bool:
        with self._lock:
            return self._reliable

    def set_long_reordering(self, yes: bool) -> None:
        with self._lock:
            self._long_reordering = yes

    def set_long_delays(self, yes: bool) -> None:
        with self._lock:
            self._long_delays = yes

    def is_long_delays(self) -> bool:
        with self._lock:
            return self._long_delays

    def make_end(self, endname: Hashable) -> ClientEnd:
        """Create a disabled, unconnected client end with a unique name."""
        with self._lock:
            if endname in self._ends:
                raise ValueError(f"make_end: {endname!r} already exists")
            end = ClientEnd(self, endname)
            self._ends[endname] = end
            self._enabled[endname] = False
            self._connections[endname] = None
            return end

    def delete_end(self, endname: Hashable) -> None:
        with self._lock:
            if endname not in self._ends:
                raise KeyError(f"delete_end: {endname!r} doesn't exist")
            del self._ends[endname]
            del self._enabled[endname]
            del self._connections[endname]

    def add_server(self, servername: Hashable, server: "Server") -> None:
        with self._lock:
            self._servers[servername] = server

    def delete_server(self, servername: Hashable) -> None:
        with self._lock:
            self._servers[servername] = None

    def connect(self, endname: Hashable, servername: Hashable) -> None:
        """Connect a client end to a server."""
        with self._lock:
            self._connections[endname] = servername

    def enable(self, endname: Hashable, enabled: bool) -> None:
        """Enable or disable a client end."""
        with self._lock:
            self._enabled[endname] = enabled

    def get_count(self, servername: Hashable) -> int:
        """Number of RPCs that reached the named server."""
        with self._lock:
            server = self._servers.get(servername)
        if server is None:
            raise KeyError(f"get_count: no server {servername!r}")
        return server.get_count()

    def get_total_count(self) -> int:
        with self._lock:
            return self._count

    def get_total_bytes(self) -> int:
        with self._lock:
            return self._bytes

    def _read_endname_info(
        self, endname: Hashable
    ) -> tuple[bool, Optional[Hashable], Optional["Server"], bool, bool]:
        with self._lock:
            enabled = self._enabled.get(endname, False)
            servername = self._connections.get(endname)
            server = self._servers.get(servername) if servername is not None else None
            return enabled, servername, server, self._reliable, self._long_reordering

    def _is_server_dead(
        self, endname: Hashable, servername: Hashable, server: "Server"
    ) -> bool:
        with self._lock:
            return (not self._enabled.get(endname, False)) or (
                self._servers.get(servername) is not server
            )

    def _process(self, endname: Hashable, svc_meth: str, args: bytes) -> bytes:
        if self._done.is_set():
            raise RPCError("network has been cleaned up")
        with self._lock:
            self._count += 1
            self._bytes += len(args)

        enabled, servername, server, reliable, long_reordering = self._read_endname_info(
            endname
        )

        if not (enabled and servername is not None and server is not None):
            # Simulate no reply and an eventual timeout.
            if self.is_long_delays():
                ms = random.randrange(LONG_DELAY)
            else:
                ms = random.randrange(100)
            time.sleep(ms / 1000)
            raise RPCError(f"no reply to {svc_meth}")

        if not reliable:
            time.sleep(random.randrange(SHORT_DELAY) / 1000)
            if random.randrange(1000) < 100:
                raise RPCError(f"request {svc_meth} lost")

        outcome: queue.Queue = queue.Queue(maxsize=1)
        threading.Thread(
            target=_run_handler, args=(server, svc_meth, args, outcome), daemon=True
        ).start()

        result: Optional[tuple[Optional[bytes], Optional[BaseException]]] = None
        while result is None:
            try:
                result = outcome.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                if self._is_server_dead(endname, servername, server):
                    raise RPCError(f"server died during {svc_meth}") from None

        # A killed server must not reply, even if its handler finished.
        if self._is_server_dead(endname, servername, server):
            raise RPCError(f"server died during {svc_meth}")

        reply, error = result
        if error is not None:
            raise error
        if not reliable and random.randrange(1000) < 100:
            raise RPCError(f"reply to {svc_meth} lost")
        if long_reordering and random.randrange(900) < 600:
            ms = 200 + random.randrange(1 + random.randrange(2000))
            time.sleep(ms / 1000)
        assert reply is not None
        with self._lock:
            self._bytes += len(reply)
        return reply


def _run_handler(
    server: "Server", svc_meth: str, args: bytes, outcome: queue.Queue
) -> None:
    try:
        outcome.put((server._dispatch(svc_meth, args), None))
    except Exception as exc:  # handed to the caller
        outcome.put((None, exc))


class Server:
    """A collection of services sharing one RPC end-point."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._services: dict[str, Service] = {}
        self._count = 0

    def add_service(self, service: "Service") -> None:
        with self._lock:
            self._services[service.name] = service

    def get_count(self) -> int:
        """Number of incoming RPCs."""
        with self._lock:
            return self._count

    def _dispatch(self, svc_meth: str, args: bytes) -> bytes:
        with self._lock:
            self._count += 1
            service_name, _, method_name = svc_meth.rpartition(".")
            service = self._services.get(service_name)
            choices = sorted(self._services)
        if service is None:
            raise LookupError(
                f"unknown service {service_name!r} in {svc_meth!r}; "
                f"expecting one of {choices}"
            )
        return service._dispatch(method_name, svc_meth, args)


def _is_handler(func: types.FunctionType, bound: bool) -> bool:
    """True when ``func`` takes exactly one positional argument besides self."""
    code = func.__code__
    if code.co_flags & (_CO_VARARGS | _CO_VARKEYWORDS):
        return False
    if code.co_kwonlyargcount:
        return False
    return code.co_argcount == (2 if bound else 1)


class Service:
    """An object whose public one-argument methods handle RPCs."""

    def __init__(self, receiver: Any, name: Optional[str] = None) -> None:
        self._name = name or type(receiver).__name__
        self._methods: dict[str, Callable[[Any], Any]] = {}
        cls = type(receiver)
        for attr in dir(cls):
            if attr.startswith("_"):
                continue
            func = getattr(cls, attr, None)
            if not isinstance(func, types.FunctionType):
                continue
            method = getattr(receiver, attr)
            if _is_handler(func, isinstance(method, types.MethodType)):
                self._methods[attr] = method

    @property
    def name(self) -> str:
        return self._name

    @property
    def methods(self) -> list[str]:
        return sorted(self._methods)

    def _dispatch(self, method_name: str, svc_meth: str, args: bytes) -> bytes:
        method = self._methods.get(method_name)
        if method is None:
            raise LookupError(
                f"unknown method {method_name!r} in {svc_meth!r}; "
                f"expecting one of {self.methods}"
            )
        reply = method(labgob.decode_value(args))
        return labgob.encode_value(reply)