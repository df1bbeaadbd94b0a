"""MapReduce worker: asks the coordinator for tasks and runs them."""

from __future__ import annotations

import itertools
import json
import sys
import threading
import time
from collections import defaultdict
from operator import attrgetter
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from .labrpc import RPCError
from .mrapps import load_app
from .mrproto import (
    ExampleArgs,
    HealthArgs,
    KeyValue,
    ReportArgs,
    Task,
    TaskArgs,
    TaskType,
    call,
)

MapFn = Callable[[str, str], list[KeyValue]]
ReduceFn = Callable[[str, Sequence[str]], str]

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193
_IDLE_WAIT = 0.3  # seconds to wait when no task is available
_HEARTBEAT = 0.8  # seconds between heartbeats for a running task


def ihash(key: str) -> int:
    """32-bit FNV-1a hash of ``key``, made non-negative; picks the reduce bucket."""
    h = _FNV_OFFSET
    for byte in key.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h & 0x7FFFFFFF


def _dump(kvs: Optional[list[KeyValue]]) -> str:
    if not kvs:
        return "null"
    return json.dumps(
        [{"Key": kv.key, "Value": kv.value} for kv in kvs],
        indent=5,
        ensure_ascii=False,
    )


def _load(text: str) -> list[KeyValue]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return []
    if not isinstance(data, list):
        return []
    return [KeyValue(item.get("Key", ""), item.get("Value", "")) for item in data]


def _write_reduced(reducef: ReduceFn, kvs: Iterable[KeyValue], output: str) -> None:
    by_key = attrgetter("key")
    with open(output, "w", encoding="utf-8") as out:
        for key, group in itertools.groupby(sorted(kvs, key=by_key), key=by_key):
            values = [kv.value for kv in group]
            out.write(f"{key} {reducef(key, values)}\n")


def map_task(mapf: MapFn, task: Task, n_reduce: int) -> list[str]:
    """Run ``mapf`` over the task's file and write one bucket file per reduce task.

    Returns the names of the files written, ``mr-<task>-<bucket>``.
    """
    contents = Path(task.files).read_text(encoding="utf-8", errors="replace")
    buckets: dict[int, list[KeyValue]] = defaultdict(list)
    for kv in mapf(task.files, contents):
        buckets[ihash(kv.key) % n_reduce].append(kv)
    written = []
    for i in range(n_reduce):
        name = f"mr-{task.id}-{i}"
        Path(name).write_text(_dump(buckets.get(i)), encoding="utf-8")
        written.append(name)
    return written


def reduce_task(reducef: ReduceFn, task: Task) -> str:
    """Reduce the task's bucket files into ``mr-out-<task>``; return its name."""
    intermediate: list[KeyValue] = []
    for filename in task.reduce_files:
        text = Path(filename).read_text(encoding="utf-8", errors="replace")
        intermediate.extend(_load(text))
    output = f"mr-out-{task.id}"
    _write_reduced(reducef, intermediate, output)
    return output


def get_task(sockname: Optional[str] = None) -> tuple[Optional[Task], int, bool]:
    """Ask for a task; return it, the number of reduce tasks and whether to exit."""
    try:
        reply = call("Coordinator.assign_task", TaskArgs(), sockname)
    except RPCError as exc:
        print(exc)
        print("Coordinator.AssignTask failed")
        return None, -1, False
    return reply.assigned_task, reply.n_reduce, reply.finished


def report_task(task: Task, sockname: Optional[str] = None) -> bool:
    """Tell the coordinator that ``task`` is complete; return whether it accepted."""
    try:
        call("Coordinator.report_task", ReportArgs(task.id, task.task_type), sockname)
    except RPCError as exc:
        print(exc)
        print("Coordinator.ReportTask failed")
        return False
    return True


def health_update(
    stop: threading.Event, task: Task, sockname: Optional[str] = None
) -> None:
    """Send heartbeats for ``task`` until ``stop`` is set."""
    args = HealthArgs(task.id, task.task_type)
    while not stop.is_set():
        try:
            call("Coordinator.health_update", args, sockname)
        except RPCError as exc:
            print(exc)
        except OSError:
            return
        stop.wait(_HEARTBEAT)


def call_example(sockname: Optional[str] = None) -> Optional[int]:
    """Make the example call; return the reply's ``y`` or None on failure."""
    try:
        reply = call("Coordinator.example", ExampleArgs(99), sockname)
    except RPCError as exc:
        print(exc)
        print("call failed!")
        return None
    print(f"reply.Y {reply.y}")
    return reply.y


def worker(mapf: MapFn, reducef: ReduceFn, sockname: Optional[str] = None) -> None:
    """Run tasks from the coordinator until it says the job is finished."""
    while True:
        task, n_reduce, finished = get_task(sockname)
        if finished:
            return
        if task is None:
            time.sleep(_IDLE_WAIT)
            continue
        if task.task_type not in (TaskType.MAP, TaskType.REDUCE):
            return
        stop = threading.Event()
        beat = threading.Thread(
            target=health_update, args=(stop, task, sockname), daemon=True
        )
        beat.start()
        try:
            if task.task_type == TaskType.MAP:
                map_task(mapf, task, n_reduce)
            else:
                reduce_task(reducef, task)
            report_task(task, sockname)
        finally:
            stop.set()
            beat.join()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run a worker with the named application."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) != 1:
        print("Usage: mrworker xxx.so", file=sys.stderr)
        return 1
    try:
        app = load_app(args[0])
    except ValueError as exc:
        print(f"cannot load plugin {args[0]}: {exc}", file=sys.stderr)
        return 1
    try:
        worker(app.mapf, app.reducef)
    except OSError as exc:
        print(f"dialing: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())