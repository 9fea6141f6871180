import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from mapreduce_sim.errors import LedgerCorruptionError, UnknownTaskError
from mapreduce_sim.utils.logger import get_logger

logger = get_logger(__name__)


class TaskKind(Enum):
    MAP = "map"
    REDUCE = "reduce"


class TaskState(Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Phase(Enum):
    MAPPING = "mapping"
    REDUCING = "reducing"
    DONE = "done"


class ReplyKind(Enum):
    MAP = "map"
    REDUCE = "reduce"
    WAIT = "wait"
    EXIT = "exit"


class Report(Enum):
    ACCEPTED = "accepted"
    STALE = "stale"


@dataclass
class Task:
    """One Map or Reduce task.

    Both kinds share the lifecycle fields; ``input_path`` is only set for
    Map tasks and ``partition`` only means something for Reduce tasks.
    """
    kind: TaskKind
    index: int
    input_path: Optional[str] = None
    state: TaskState = TaskState.IDLE
    worker_id: Optional[str] = None
    assigned_at: Optional[float] = None
    attempts: int = 0
    completed_by: Optional[str] = None
    stale_reports: int = 0

    @property
    def task_id(self):
        return f"{self.kind.value}-{self.index}"

    @property
    def partition(self):
        return self.index if self.kind is TaskKind.REDUCE else None


@dataclass(frozen=True)
class TaskReply:
    """What a worker gets back from ``next_task``."""
    kind: ReplyKind
    task_index: int = 0
    input_paths: List[str] = field(default_factory=list)
    n_map: int = 0
    n_reduce: int = 0


class TaskLedger:
    """Source of truth for every task in the job, guarded by a single lock.

    Only three operations mutate the ledger: ``next_task``, ``mark_done`` and
    ``sweep_timeouts``. Each runs entirely inside the lock so no caller ever
    sees a half-applied update.

    Duplicate completions:
    ----------------------
    Worker A takes a task, goes quiet, and the sweeper hands the task to
    worker B. Both may eventually report. Only a report from the worker the
    ledger currently has on record, for a task that is not yet Completed, is
    accepted. Everything else is Stale: counted, logged, and otherwise
    ignored. A Completed task never goes back to any other state.
    """

    def __init__(self, input_files, n_reduce, task_timeout=10.0, clock=time.monotonic):
        if n_reduce < 1:
            raise ValueError(f"n_reduce must be >= 1, got {n_reduce}")

        self.n_map = len(input_files)
        self.n_reduce = n_reduce
        self.task_timeout = task_timeout
        self.clock = clock

        self.map_tasks = [
            Task(TaskKind.MAP, i, input_path=path)
            for i, path in enumerate(input_files)
        ]
        self.reduce_tasks = [Task(TaskKind.REDUCE, r) for r in range(n_reduce)]
        self.phase = Phase.MAPPING
        self.event_history = []  # For the status endpoint: list of {timestamp, event, details}
        self.lock = threading.Lock()

        with self.lock:
            self._log_event('job_created', {'n_map': self.n_map, 'n_reduce': n_reduce})
            # No inputs means the map phase is already over
            self._advance_phase()

    def _log_event(self, event_type, details):
        self.event_history.append({
            'timestamp': time.time(),
            'event': event_type,
            'details': details
        })
        # Keep only last 100 events
        if len(self.event_history) > 100:
            self.event_history = self.event_history[-100:]

    def _tasks_for(self, kind):
        return self.map_tasks if kind is TaskKind.MAP else self.reduce_tasks

    def _current_tasks(self):
        if self.phase is Phase.MAPPING:
            return self.map_tasks
        if self.phase is Phase.REDUCING:
            return self.reduce_tasks
        return []

    def _advance_phase(self):
        """Move Mapping -> Reducing -> Done as far as completed tasks allow.

        Must be called with the lock held.
        """
        if self.phase is Phase.MAPPING and all(
                t.state is TaskState.COMPLETED for t in self.map_tasks):
            self.phase = Phase.REDUCING
            self._check_invariants()
            self._log_event('phase_changed', {'phase': self.phase.value})
            logger.info(f"All {self.n_map} map tasks completed, starting {self.n_reduce} reduce tasks")

        if self.phase is Phase.REDUCING and all(
                t.state is TaskState.COMPLETED for t in self.reduce_tasks):
            self.phase = Phase.DONE
            self._check_invariants()
            self._log_event('phase_changed', {'phase': self.phase.value})
            logger.info("All reduce tasks completed, MapReduce job complete")

    def _check_invariants(self):
        if self.phase in (Phase.REDUCING, Phase.DONE):
            pending = [t.task_id for t in self.map_tasks if t.state is not TaskState.COMPLETED]
            if pending:
                raise LedgerCorruptionError(
                    f"phase is {self.phase.value} but map tasks {pending} are not completed")
        if self.phase is Phase.DONE:
            pending = [t.task_id for t in self.reduce_tasks if t.state is not TaskState.COMPLETED]
            if pending:
                raise LedgerCorruptionError(
                    f"phase is done but reduce tasks {pending} are not completed")
        for task in self.map_tasks + self.reduce_tasks:
            if (task.state is TaskState.IN_PROGRESS) != (task.worker_id is not None):
                raise LedgerCorruptionError(
                    f"task {task.task_id} is {task.state.value} with worker {task.worker_id!r}")

    def next_task(self, worker_id, now=None):
        """Hand the lowest-index Idle task of the current phase to ``worker_id``.

        Scheduling policy:
        1. Phase transitions happen first, inside the same critical section,
           so nobody receives a Map task once reducing has begun
        2. Lowest-index Idle task in the current phase is assigned
        3. Nothing Idle but tasks still running -> Wait
        4. Job done -> Exit

        Args:
            worker_id: Identifier of the requesting worker
            now: Assignment timestamp (defaults to the ledger clock)

        Returns:
            TaskReply
        """
        with self.lock:
            self._advance_phase()

            if self.phase is Phase.DONE:
                return TaskReply(ReplyKind.EXIT, n_map=self.n_map, n_reduce=self.n_reduce)

            for task in self._current_tasks():
                if task.state is TaskState.IDLE:
                    task.state = TaskState.IN_PROGRESS
                    task.worker_id = worker_id
                    task.assigned_at = self.clock() if now is None else now
                    task.attempts += 1
                    self._log_event('task_assigned', {
                        'task_id': task.task_id,
                        'worker_id': worker_id,
                        'attempt': task.attempts
                    })
                    logger.info(f"Assigned {task.task_id} to worker {worker_id} (attempt {task.attempts})")

                    return TaskReply(
                        ReplyKind(task.kind.value),
                        task_index=task.index,
                        input_paths=[task.input_path] if task.input_path is not None else [],
                        n_map=self.n_map,
                        n_reduce=self.n_reduce
                    )

            return TaskReply(ReplyKind.WAIT, n_map=self.n_map, n_reduce=self.n_reduce)

    def mark_done(self, kind, index, worker_id):
        """Record that ``worker_id`` finished task ``(kind, index)``.

        Returns:
            Report.ACCEPTED the first time the assigned worker reports,
            Report.STALE for everything else (already completed, or the
            task has been taken away from this worker)

        Raises:
            UnknownTaskError: no such task in this job
        """
        tasks = self._tasks_for(kind)
        if not 0 <= index < len(tasks):
            raise UnknownTaskError(kind.value, index)

        with self.lock:
            task = tasks[index]

            if task.state is TaskState.COMPLETED or task.worker_id != worker_id:
                task.stale_reports += 1
                self._log_event('stale_completion', {
                    'task_id': task.task_id,
                    'worker_id': worker_id,
                    'completed_by': task.completed_by
                })
                logger.info(f"Stale completion for {task.task_id} from worker {worker_id} "
                            f"(state {task.state.value}, assigned to {task.worker_id}, "
                            f"completed by {task.completed_by})")
                return Report.STALE

            task.state = TaskState.COMPLETED
            task.completed_by = worker_id
            task.worker_id = None
            self._log_event('task_completed', {'task_id': task.task_id, 'worker_id': worker_id})
            logger.info(f"Task {task.task_id} completed by {worker_id}")

            self._advance_phase()
            return Report.ACCEPTED

    def sweep_timeouts(self, now=None):
        """Put every task assigned longer than ``task_timeout`` back to Idle.

        A slow worker and a dead one look the same from here; both lose the
        task. If the slow one reports later its report is Stale.

        Returns:
            List of task ids that were reset
        """
        with self.lock:
            now = self.clock() if now is None else now
            reset = []

            for task in self.map_tasks + self.reduce_tasks:
                if task.state is not TaskState.IN_PROGRESS:
                    continue
                age = now - task.assigned_at
                if age > self.task_timeout:
                    self._log_event('task_timed_out', {
                        'task_id': task.task_id,
                        'worker_id': task.worker_id,
                        'age': round(age, 3)
                    })
                    logger.warning(f"Task {task.task_id} on worker {task.worker_id} "
                                   f"timed out after {age:.1f}s, reassigning")
                    task.state = TaskState.IDLE
                    task.worker_id = None
                    task.assigned_at = None
                    reset.append(task.task_id)

            return reset

    def is_done(self):
        with self.lock:
            return self.phase is Phase.DONE

    def get_phase(self):
        with self.lock:
            return self.phase

    def get_task(self, kind, index):
        """Return a copy of one task record."""
        with self.lock:
            task = self._tasks_for(kind)[index]
            return Task(**vars(task))

    def progress(self):
        """Task counts per kind and state, for the status endpoint."""
        with self.lock:
            summary = {'phase': self.phase.value, 'done': self.phase is Phase.DONE}
            for kind, tasks in ((TaskKind.MAP, self.map_tasks), (TaskKind.REDUCE, self.reduce_tasks)):
                counts = {state.value: 0 for state in TaskState}
                for task in tasks:
                    counts[task.state.value] += 1
                counts['total'] = len(tasks)
                counts['stale_reports'] = sum(t.stale_reports for t in tasks)
                counts['running'] = [
                    {'task_id': t.task_id, 'worker_id': t.worker_id}
                    for t in tasks if t.state is TaskState.IN_PROGRESS
                ]
                summary[kind.value] = counts
            return summary

    def recent_events(self, count=20):
        with self.lock:
            return [dict(e) for e in self.event_history[-count:]]
