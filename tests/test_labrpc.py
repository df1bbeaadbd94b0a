import threading
import time
from dataclasses import dataclass

import pytest

from labkv.labrpc import ClientEnd, Network, RPCError, Server, Service


@dataclass
class JunkArgs:
    x: int = 0


@dataclass
class JunkReply:
    x: str = ""


class JunkServer:
    def __init__(self):
        self.lock = threading.Lock()
        self.log1 = []
        self.log2 = []
        self.release = threading.Event()

    def handler1(self, args):
        with self.lock:
            self.log1.append(args)
            try:
                return int(args)
            except ValueError:
                return 0

    def handler2(self, args):
        with self.lock:
            self.log2.append(args)
            return "handler2-" + str(args)

    def handler3(self, args):
        with self.lock:
            self.release.wait(20)
            return -args

    def handler4(self, args):
        return JunkReply("pointer" if isinstance(args, JunkArgs) else "other")

    def handler6(self, args):
        with self.lock:
            return len(args)

    def handler7(self, args):
        with self.lock:
            return "y" * args

    def explode(self, args):
        raise ValueError(args)

    def helper(self, a, b):
        return a + b


@pytest.fixture
def rn():
    net = Network()
    yield net
    net.cleanup()


def _setup(rn, servername="server99", endname="end1-99", enable=True):
    js = JunkServer()
    rs = Server()
    rs.add_service(Service(js))
    rn.add_server(servername, rs)
    e = rn.make_end(endname)
    rn.connect(endname, servername)
    if enable:
        rn.enable(endname, True)
    return js, e


def test_basic(rn):
    _, e = _setup(rn)
    assert e.call("JunkServer.handler2", 111) == "handler2-111"
    assert e.call("JunkServer.handler1", "9099") == 9099


def test_types(rn):
    _, e = _setup(rn)
    reply = e.call("JunkServer.handler4", JunkArgs())
    assert reply == JunkReply("pointer")


def test_disconnect(rn):
    _, e = _setup(rn, enable=False)
    with pytest.raises(RPCError):
        e.call("JunkServer.handler2", 111)
    rn.enable("end1-99", True)
    assert e.call("JunkServer.handler1", "9099") == 9099


def test_counts(rn):
    _, e = _setup(rn, servername=99)
    for i in range(17):
        assert e.call("JunkServer.handler2", i) == f"handler2-{i}"
    assert rn.get_count(99) == 17
    assert rn.get_total_count() == 17


def test_bytes(rn):
    _, e = _setup(rn, servername=99)
    for _ in range(17):
        args = "x" * 72
        args = args + args
        args = args + args
        assert e.call("JunkServer.handler6", args) == len(args)
    n = rn.get_total_bytes()
    assert 4828 <= n <= 6000

    for _ in range(17):
        reply = e.call("JunkServer.handler7", 107)
        assert len(reply) == 107
    nn = rn.get_total_bytes() - n
    assert 1800 <= nn <= 2500


def test_concurrent_many(rn):
    js = JunkServer()
    rs = Server()
    rs.add_service(Service(js))
    rn.add_server(1000, rs)

    nclients, nrpcs = 20, 10
    results = [[] for _ in range(nclients)]

    def client(i):
        e = rn.make_end(i)
        rn.connect(i, 1000)
        rn.enable(i, True)
        for j in range(nrpcs):
            arg = i * 100 + j
            results[i].append((arg, e.call("JunkServer.handler2", arg)))

    threads = [threading.Thread(target=client, args=(i,)) for i in range(nclients)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    total = sum(len(r) for r in results)
    assert total == nclients * nrpcs
    for r in results:
        for arg, reply in r:
            assert reply == f"handler2-{arg}"
    assert rn.get_count(1000) == total


def test_unreliable(rn):
    rn.set_reliable(False)
    js = JunkServer()
    rs = Server()
    rs.add_service(Service(js))
    rn.add_server(1000, rs)

    nclients = 100
    succeeded = 0
    failed = 0
    for i in range(nclients):
        e = rn.make_end(i)
        rn.connect(i, 1000)
        rn.enable(i, True)
        try:
            reply = e.call("JunkServer.handler2", i * 100)
        except RPCError:
            failed += 1
            continue
        assert reply == f"handler2-{i * 100}"
        succeeded += 1

    assert succeeded + failed == nclients
    assert 0 < succeeded < nclients


def test_concurrent_one(rn):
    js, e = _setup(rn, servername=1000, endname="c")
    nrpcs = 20
    replies = [None] * nrpcs

    def client(i):
        replies[i] = e.call("JunkServer.handler2", 100 + i)

    threads = [threading.Thread(target=client, args=(i,)) for i in range(nrpcs)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert replies == [f"handler2-{100 + i}" for i in range(nrpcs)]
    with js.lock:
        assert len(js.log2) == nrpcs
    assert rn.get_count(1000) == nrpcs


def test_regression1(rn):
    js, e = _setup(rn, servername=1000, endname="c", enable=False)
    nrpcs = 20
    failures = []

    def client(i):
        try:
            e.call("JunkServer.handler2", 100 + i)
        except RPCError:
            failures.append(i)

    threads = [threading.Thread(target=client, args=(i,)) for i in range(nrpcs)]
    for t in threads:
        t.start()

    time.sleep(0.1)

    t0 = time.monotonic()
    rn.enable("c", True)
    assert e.call("JunkServer.handler2", 99) == "handler2-99"
    assert time.monotonic() - t0 < 0.5

    for t in threads:
        t.join()
    assert len(failures) == nrpcs
    with js.lock:
        assert js.log2 == [99]
    assert rn.get_count(1000) == 1


def test_killed(rn):
    js, e = _setup(rn)
    timer = threading.Timer(1.0, rn.delete_server, args=("server99",))
    timer.start()
    t0 = time.monotonic()
    try:
        with pytest.raises(RPCError):
            e.call("JunkServer.handler3", 99)
        elapsed = time.monotonic() - t0
    finally:
        timer.cancel()
        js.release.set()
    # The call stayed stuck until the server was deleted, then failed quickly.
    assert 0.9 <= elapsed < 2.0


def test_benchmark(rn):
    _, e = _setup(rn)
    for _ in range(1000):
        assert e.call("JunkServer.handler2", 111) == "handler2-111"
    assert rn.get_count("server99") == 1000


def test_long_delay_race(rn):
    _, e = _setup(rn)
    assert e.call("JunkServer.handler1", "9099") == 9099
    rn.set_long_delays(True)
    rn.delete_server("server99")

    done = threading.Event()

    def run():
        try:
            e.call("JunkServer.handler1", "9099")
        except RPCError:
            pass
        done.set()

    threading.Thread(target=run, daemon=True).start()
    rn.set_long_delays(True)
    done.wait(0.2)
    rn.set_long_delays(True)
    assert rn.is_long_delays() is True


def test_long_reordering_still_delivers(rn):
    _, e = _setup(rn)
    rn.set_long_reordering(True)
    assert e.call("JunkServer.handler2", 5) == "handler2-5"


def test_reliable_flag(rn):
    assert rn.is_reliable() is True
    rn.set_reliable(False)
    assert rn.is_reliable() is False


def test_call_after_cleanup_fails(rn):
    _, e = _setup(rn)
    rn.cleanup()
    with pytest.raises(RPCError):
        e.call("JunkServer.handler2", 1)
    assert rn.get_total_count() == 0


def test_make_end_duplicate(rn):
    end = rn.make_end("a")
    assert isinstance(end, ClientEnd) and end.endname == "a"
    with pytest.raises(ValueError):
        rn.make_end("a")


def test_delete_end(rn):
    _, e = _setup(rn)
    rn.delete_end("end1-99")
    with pytest.raises(RPCError):
        e.call("JunkServer.handler2", 1)
    with pytest.raises(KeyError):
        rn.delete_end("end1-99")


def test_get_count_unknown_server(rn):
    with pytest.raises(KeyError):
        rn.get_count("nope")


def test_unknown_service_and_method(rn):
    _, e = _setup(rn)
    with pytest.raises(LookupError):
        e.call("Nobody.handler2", 1)
    with pytest.raises(LookupError):
        e.call("JunkServer.missing", 1)
    with pytest.raises(LookupError):
        e.call("JunkServer.helper", 1)


def test_service_methods_filter():
    svc = Service(JunkServer())
    assert svc.name == "JunkServer"
    assert "handler2" in svc.methods
    assert "helper" not in svc.methods
    assert Service(JunkServer(), name="Junk").name == "Junk"


def test_handler_exception_propagates(rn):
    _, e = _setup(rn)
    with pytest.raises(ValueError, match="boom"):
        e.call("JunkServer.explode", "boom")


def test_server_count_includes_all_dispatches(rn):
    _, e = _setup(rn)
    e.call("JunkServer.handler2", 1)
    with pytest.raises(LookupError):
        e.call("JunkServer.missing", 1)
    assert rn.get_count("server99") == 2


def test_args_are_copied(rn):
    js, e = _setup(rn)
    payload = [1, 2, 3]
    e.call("JunkServer.handler2", payload)
    payload.append(4)
    with js.lock:
        assert js.log2 == [[1, 2, 3]]