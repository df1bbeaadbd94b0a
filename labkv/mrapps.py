"""MapReduce applications: word count, indexing and test workloads.

Each application is a map function ``(filename, contents) -> [KeyValue]``
and a reduce function ``(key, values) -> str``.
"""

from __future__ import annotations

import itertools
import os
import random
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Sequence

from .mrproto import KeyValue

MapFn = Callable[[str, str], list[KeyValue]]
ReduceFn = Callable[[str, Sequence[str]], str]


@dataclass(frozen=True)
class App:
    """A named pair of map and reduce functions."""

    name: str
    mapf: MapFn
    reducef: ReduceFn


def _words(text: str) -> Iterator[str]:
    """Maximal runs of letters."""
    for is_letter, group in itertools.groupby(text, str.isalpha):
        if is_letter:
            yield "".join(group)


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def _summary(filename: str, contents: str) -> list[KeyValue]:
    return [
        KeyValue("a", filename),
        KeyValue("b", str(_byte_len(filename))),
        KeyValue("c", str(_byte_len(contents))),
        KeyValue("d", "xyzzy"),
    ]


def wc_map(filename: str, contents: str) -> list[KeyValue]:
    """Emit ``(word, "1")`` for every word of the contents."""
    return [KeyValue(w, "1") for w in _words(contents)]


def wc_reduce(key: str, values: Sequence[str]) -> str:
    """Number of occurrences of the word."""
    return str(len(values))


def indexer_map(document: str, value: str) -> list[KeyValue]:
    """Emit ``(word, document)`` once for each distinct word."""
    return [KeyValue(w, document) for w in dict.fromkeys(_words(value))]


def indexer_reduce(key: str, values: Sequence[str]) -> str:
    """Count of documents and their sorted, comma-separated names."""
    docs = sorted(values)
    return f"{len(docs)} {','.join(docs)}"


def _maybe_crash() -> None:
    r = secrets.randbelow(1000)
    if r < 330:
        os._exit(1)
    elif r < 660:
        time.sleep(secrets.randbelow(10 * 1000) / 1000)


def crash_map(filename: str, contents: str) -> list[KeyValue]:
    """Sometimes exit or stall, then summarise the file."""
    _maybe_crash()
    return _summary(filename, contents)


def crash_reduce(key: str, values: Sequence[str]) -> str:
    """Sometimes exit or stall, then join the sorted values."""
    _maybe_crash()
    return " ".join(sorted(values))


def nocrash_map(filename: str, contents: str) -> list[KeyValue]:
    """Summarise the file: its name, name length, content length and a marker."""
    return _summary(filename, contents)


def nocrash_reduce(key: str, values: Sequence[str]) -> str:
    """Join the sorted values with spaces."""
    return " ".join(sorted(values))


def early_exit_map(filename: str, contents: str) -> list[KeyValue]:
    """Emit ``(filename, "1")``."""
    return [KeyValue(filename, "1")]


def early_exit_reduce(key: str, values: Sequence[str]) -> str:
    """Count the values, stalling for some keys to catch workers that quit early."""
    if "sherlock" in key or "tom" in key:
        time.sleep(3)
    return str(len(values))


_jobcount = itertools.count()


def jobcount_map(filename: str, contents: str) -> list[KeyValue]:
    """Leave a marker file for this invocation, then stall a while."""
    path = Path(f"mr-worker-jobcount-{os.getpid()}-{next(_jobcount)}")
    path.write_bytes(b"x")
    time.sleep((2000 + random.randrange(3000)) / 1000)
    return [KeyValue("a", "x")]


def jobcount_reduce(key: str, values: Sequence[str]) -> str:
    """Number of map invocations, counted from the marker files."""
    return str(
        sum(1 for name in os.listdir(".") if name.startswith("mr-worker-jobcount"))
    )


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except (OSError, OverflowError):
        return False
    return True


def nparallel(phase: str) -> int:
    """Number of live workers currently in ``phase``, this one included.

    Each worker announces itself with a marker file in the current directory
    for about a second.
    """
    mine = Path(f"mr-worker-{phase}-{os.getpid()}")
    mine.write_bytes(b"x")
    pattern = re.compile(rf"mr-worker-{re.escape(phase)}-([+-]?\d+)")
    running = 0
    for name in os.listdir("."):
        match = pattern.match(name)
        if match and _alive(int(match.group(1))):
            running += 1
    time.sleep(1)
    mine.unlink()
    return running


def mtiming_map(filename: str, contents: str) -> list[KeyValue]:
    """Record the start time and how many map workers ran alongside."""
    ts = time.time()
    pid = os.getpid()
    n = nparallel("map")
    return [
        KeyValue(f"times-{pid}", f"{ts:.1f}"),
        KeyValue(f"parallel-{pid}", str(n)),
    ]


def mtiming_reduce(key: str, values: Sequence[str]) -> str:
    """Join the sorted values with spaces."""
    return " ".join(sorted(values))


def rtiming_map(filename: str, contents: str) -> list[KeyValue]:
    """Emit keys ``a`` to ``j``, each with value ``"1"``."""
    return [KeyValue(k, "1") for k in "abcdefghij"]


def rtiming_reduce(key: str, values: Sequence[str]) -> str:
    """How many reduce workers ran alongside."""
    return str(nparallel("reduce"))


_APPS = {
    app.name: app
    for app in (
        App("wc", wc_map, wc_reduce),
        App("indexer", indexer_map, indexer_reduce),
        App("crash", crash_map, crash_reduce),
        App("nocrash", nocrash_map, nocrash_reduce),
        App("early_exit", early_exit_map, early_exit_reduce),
        App("jobcount", jobcount_map, jobcount_reduce),
        App("mtiming", mtiming_map, mtiming_reduce),
        App("rtiming", rtiming_map, rtiming_reduce),
    )
}


def load_app(name: str) -> App:
    """Look up an application by name; a path such as ``../mrapps/wc.so`` works too."""
    key = Path(name).stem
    try:
        return _APPS[key]
    except KeyError:
        raise ValueError(
            f"unknown application {name!r}; expecting one of {sorted(_APPS)}"
        ) from None