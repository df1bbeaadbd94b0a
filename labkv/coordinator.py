"""MapReduce coordinator: hands out map and reduce tasks and tracks their progress."""

from __future__ import annotations

import dataclasses
import enum
import sys
import threading
import time
from typing import Optional, Sequence

from . import mrproto
from .mrproto import (
    ExampleArgs,
    ExampleReply,
    HealthArgs,
    ReportArgs,
    RPCServer,
    Task,
    TaskArgs,
    TaskReply,
    TaskStatus,
    TaskType,
)

N_REDUCE = 10
HEALTH_CHECK_INTERVAL = 2.0  # seconds between sweeps for stale tasks
TASK_TIMEOUT = 1.0  # seconds without a heartbeat before a task is handed out again
DONE_LINGER = 1.0  # seconds done() waits once the job is over


class WorkPhase(enum.IntEnum):
    """Stage of the whole job."""

    BEGIN = 0
    MAPPING = 1
    REDUCING = 2
    DONE = 3


def _snapshot(task: Task) -> Task:
    return dataclasses.replace(task, reduce_files=list(task.reduce_files))


def _claim(tasks: list[Task]) -> Optional[Task]:
    for task in tasks:
        if task.status == TaskStatus.IDLE:
            task.status = TaskStatus.IN_PROGRESS
            task.fresh_time = time.monotonic()
            return _snapshot(task)
    return None


def _all_completed(tasks: list[Task]) -> bool:
    return all(task.status == TaskStatus.COMPLETED for task in tasks)


def _complete(tasks: list[Task], task_id: int) -> None:
    for task in tasks:
        if task.id == task_id and task.status == TaskStatus.IN_PROGRESS:
            task.status = TaskStatus.COMPLETED


class Coordinator:
    """Splits a job into one map task per input file and ``n_reduce`` reduce tasks."""

    def __init__(
        self, files: Sequence[str], n_reduce: int, linger: float = DONE_LINGER
    ) -> None:
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._server: Optional[RPCServer] = None
        self.n_reduce = n_reduce
        self.linger = linger
        self.map_tasks = [
            Task(id=i, files=f, status=TaskStatus.IDLE, task_type=TaskType.MAP)
            for i, f in enumerate(files)
        ]
        self.reduce_tasks = [
            Task(id=i, status=TaskStatus.IDLE, task_type=TaskType.REDUCE)
            for i in range(n_reduce)
        ]
        self._phase = WorkPhase.MAPPING

    @property
    def phase(self) -> WorkPhase:
        with self._lock:
            return self._phase

    def assign_task(self, args: TaskArgs) -> TaskReply:
        """Hand out an idle task of the current phase, if any."""
        with self._lock:
            if self._phase == WorkPhase.MAPPING:
                task = _claim(self.map_tasks)
                if task is not None:
                    return TaskReply(task, False, self.n_reduce)
                return TaskReply()
            if self._phase == WorkPhase.REDUCING:
                task = _claim(self.reduce_tasks)
                if task is not None:
                    return TaskReply(task, False, self.n_reduce)
                return TaskReply(None, _all_completed(self.reduce_tasks), 0)
            if self._phase == WorkPhase.DONE:
                return TaskReply(finished=True)
            return TaskReply()

    def report_task(self, args: ReportArgs) -> None:
        """Mark a running task completed and advance the phase when all are."""
        with self._lock:
            if self._phase == WorkPhase.MAPPING and args.task_type == TaskType.MAP:
                _complete(self.map_tasks, args.task_id)
                if _all_completed(self.map_tasks):
                    for i, task in enumerate(self.reduce_tasks):
                        task.reduce_files = [
                            f"mr-{j}-{i}" for j in range(len(self.map_tasks))
                        ]
                    self._phase = WorkPhase.REDUCING
            elif (
                self._phase == WorkPhase.REDUCING
                and args.task_type == TaskType.REDUCE
            ):
                _complete(self.reduce_tasks, args.task_id)
                if _all_completed(self.reduce_tasks):
                    self._phase = WorkPhase.DONE
            else:
                raise ValueError("report task fail: error Task Type")

    def health_update(self, args: HealthArgs) -> None:
        """Record a heartbeat for a running task."""
        with self._lock:
            if args.task_type == TaskType.MAP:
                tasks = self.map_tasks
            elif args.task_type == TaskType.REDUCE:
                tasks = self.reduce_tasks
            else:
                return
            if not 0 <= args.task_id < len(tasks):
                raise ValueError(
                    f"no {args.task_type.name.lower()} task {args.task_id}"
                )
            tasks[args.task_id].fresh_time = time.monotonic()

    def expire_stale_tasks(self, now: Optional[float] = None) -> list[int]:
        """Make running tasks without a recent heartbeat idle again; return their ids."""
        now = time.monotonic() if now is None else now
        with self._lock:
            if self._phase == WorkPhase.MAPPING:
                tasks = self.map_tasks
            elif self._phase == WorkPhase.REDUCING:
                tasks = self.reduce_tasks
            else:
                return []
            expired = []
            for task in tasks:
                if (
                    task.status == TaskStatus.IN_PROGRESS
                    and now > task.fresh_time + TASK_TIMEOUT
                ):
                    task.status = TaskStatus.IDLE
                    expired.append(task.id)
            return expired

    def health_check(self) -> None:
        """Sweep for stale tasks periodically until the coordinator is closed."""
        while not self._stop.wait(HEALTH_CHECK_INTERVAL):
            self.expire_stale_tasks()

    def serve(self, sockname: Optional[str] = None) -> RPCServer:
        """Start answering worker calls on a UNIX-domain socket."""
        self._server = mrproto.serve(self, sockname)
        return self._server

    def done(self) -> bool:
        """Whether the whole job has finished."""
        finished = self.phase == WorkPhase.DONE
        if finished and self.linger > 0:
            time.sleep(self.linger)
        return finished

    def example(self, args: ExampleArgs) -> ExampleReply:
        """Reply with ``args.x + 1``."""
        return ExampleReply(y=args.x + 1)

    def close(self) -> None:
        """Stop the health check and the server."""
        self._stop.set()
        if self._server is not None:
            self._server.close()
            self._server = None


def make_coordinator(files: Sequence[str], n_reduce: int) -> Coordinator:
    """Create a coordinator, start its health check and serve it."""
    coordinator = Coordinator(list(files), n_reduce)
    threading.Thread(target=coordinator.health_check, daemon=True).start()
    coordinator.serve()
    return coordinator


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run a coordinator over the given input files until the job is done."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("Usage: mrcoordinator inputfiles...", file=sys.stderr)
        return 1
    coordinator = make_coordinator(args, N_REDUCE)
    try:
        while not coordinator.done():
            time.sleep(1)
        time.sleep(1)
    finally:
        coordinator.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())