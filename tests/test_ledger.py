import threading

import pytest

from mapreduce_sim.coordinator.ledger import (
    Phase, ReplyKind, Report, TaskKind, TaskLedger, TaskState
)
from mapreduce_sim.errors import LedgerCorruptionError, UnknownTaskError


class FakeClock:
    def __init__(self, start=100.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_ledger(n_map=3, n_reduce=2, clock=None):
    return TaskLedger([f"in-{i}.txt" for i in range(n_map)], n_reduce,
                      task_timeout=10.0, clock=clock or FakeClock())


def run_phase(ledger, kind, worker_id='w'):
    count = ledger.n_map if kind is TaskKind.MAP else ledger.n_reduce
    for _ in range(count):
        reply = ledger.next_task(worker_id)
        assert reply.kind.value == kind.value
        assert ledger.mark_done(kind, reply.task_index, worker_id) is Report.ACCEPTED


def test_map_tasks_assigned_lowest_index_first():
    ledger = make_ledger()

    replies = [ledger.next_task(f"w{i}") for i in range(3)]

    assert [r.kind for r in replies] == [ReplyKind.MAP] * 3
    assert [r.task_index for r in replies] == [0, 1, 2]
    assert [r.input_paths for r in replies] == [["in-0.txt"], ["in-1.txt"], ["in-2.txt"]]
    assert all(r.n_map == 3 and r.n_reduce == 2 for r in replies)

    task = ledger.get_task(TaskKind.MAP, 1)
    assert task.state is TaskState.IN_PROGRESS
    assert task.worker_id == "w1"
    assert task.assigned_at == 100.0


def test_wait_while_stragglers_run():
    ledger = make_ledger(n_map=1)
    ledger.next_task("w1")

    assert ledger.next_task("w2").kind is ReplyKind.WAIT


def test_no_reduce_task_before_every_map_completes():
    ledger = make_ledger()
    for i in range(3):
        ledger.next_task(f"w{i}")
    ledger.mark_done(TaskKind.MAP, 0, "w0")
    ledger.mark_done(TaskKind.MAP, 1, "w1")

    assert ledger.next_task("w3").kind is ReplyKind.WAIT
    assert ledger.get_phase() is Phase.MAPPING

    ledger.mark_done(TaskKind.MAP, 2, "w2")
    assert ledger.get_phase() is Phase.REDUCING

    reply = ledger.next_task("w3")
    assert reply.kind is ReplyKind.REDUCE
    assert reply.task_index == 0
    assert reply.input_paths == []
    assert reply.n_map == 3


def test_done_flips_once_and_stays_true():
    ledger = make_ledger()
    observed = [ledger.is_done()]

    run_phase(ledger, TaskKind.MAP)
    observed.append(ledger.is_done())
    reply = ledger.next_task("w")
    observed.append(ledger.is_done())
    ledger.mark_done(TaskKind.REDUCE, reply.task_index, "w")
    observed.append(ledger.is_done())
    reply = ledger.next_task("w")
    ledger.mark_done(TaskKind.REDUCE, reply.task_index, "w")
    observed.append(ledger.is_done())

    ledger.sweep_timeouts(now=10_000.0)
    ledger.mark_done(TaskKind.REDUCE, 0, "late")
    observed.append(ledger.is_done())

    assert observed == [False, False, False, False, True, True]
    assert ledger.next_task("w").kind is ReplyKind.EXIT


def test_duplicate_report_is_stale():
    ledger = make_ledger(n_map=1)
    ledger.next_task("w1")

    assert ledger.mark_done(TaskKind.MAP, 0, "w1") is Report.ACCEPTED
    assert ledger.mark_done(TaskKind.MAP, 0, "w1") is Report.STALE

    task = ledger.get_task(TaskKind.MAP, 0)
    assert task.state is TaskState.COMPLETED
    assert task.completed_by == "w1"
    assert task.stale_reports == 1


def test_report_from_unassigned_worker_is_stale():
    ledger = make_ledger(n_map=1)
    ledger.next_task("w1")

    assert ledger.mark_done(TaskKind.MAP, 0, "intruder") is Report.STALE
    assert ledger.get_task(TaskKind.MAP, 0).state is TaskState.IN_PROGRESS


def test_timed_out_task_is_reassigned_and_straggler_report_discarded():
    clock = FakeClock()
    ledger = make_ledger(n_map=1, clock=clock)
    ledger.next_task("slow")

    clock.advance(10.0)
    assert ledger.sweep_timeouts() == []

    clock.advance(0.5)
    assert ledger.sweep_timeouts() == ["map-0"]
    task = ledger.get_task(TaskKind.MAP, 0)
    assert task.state is TaskState.IDLE
    assert task.worker_id is None
    assert task.assigned_at is None

    reply = ledger.next_task("fast")
    assert (reply.kind, reply.task_index) == (ReplyKind.MAP, 0)

    assert ledger.mark_done(TaskKind.MAP, 0, "slow") is Report.STALE
    assert ledger.mark_done(TaskKind.MAP, 0, "fast") is Report.ACCEPTED

    task = ledger.get_task(TaskKind.MAP, 0)
    assert task.completed_by == "fast"
    assert task.attempts == 2


def test_sweep_leaves_idle_and_completed_tasks_alone():
    clock = FakeClock()
    ledger = make_ledger(clock=clock)
    ledger.next_task("w0")
    ledger.mark_done(TaskKind.MAP, 0, "w0")
    ledger.next_task("w1")

    clock.advance(60)
    assert ledger.sweep_timeouts() == ["map-1"]
    assert ledger.get_task(TaskKind.MAP, 0).state is TaskState.COMPLETED
    assert ledger.get_task(TaskKind.MAP, 2).state is TaskState.IDLE


def test_reduce_tasks_time_out_too():
    clock = FakeClock()
    ledger = make_ledger(n_map=1, n_reduce=1, clock=clock)
    run_phase(ledger, TaskKind.MAP)
    ledger.next_task("w")

    clock.advance(11)
    assert ledger.sweep_timeouts() == ["reduce-0"]


def test_concurrent_reports_accept_exactly_one():
    clock = FakeClock()
    ledger = make_ledger(n_map=1, clock=clock)
    ledger.next_task("straggler")
    clock.advance(11)
    ledger.sweep_timeouts()
    ledger.next_task("replacement")

    barrier = threading.Barrier(8)
    results = []
    results_lock = threading.Lock()

    def report(worker_id):
        barrier.wait()
        outcome = ledger.mark_done(TaskKind.MAP, 0, worker_id)
        with results_lock:
            results.append(outcome)

    threads = [
        threading.Thread(target=report, args=("straggler" if i % 2 else "replacement",))
        for i in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(Report.ACCEPTED) == 1
    assert results.count(Report.STALE) == 7
    task = ledger.get_task(TaskKind.MAP, 0)
    assert task.state is TaskState.COMPLETED
    assert task.completed_by == "replacement"
    assert ledger.progress()['map']['completed'] == 1


def test_reduce_never_assigned_before_maps_complete_under_concurrency():
    ledger = make_ledger(n_map=4, n_reduce=3)

    def work(worker_id):
        while True:
            reply = ledger.next_task(worker_id)
            if reply.kind is ReplyKind.EXIT:
                return
            if reply.kind is ReplyKind.WAIT:
                continue
            ledger.mark_done(TaskKind(reply.kind.value), reply.task_index, worker_id)

    threads = [threading.Thread(target=work, args=(f"w{i}",)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert ledger.is_done()
    events = ledger.recent_events(100)
    last_map_done = max(i for i, e in enumerate(events)
                        if e['event'] == 'task_completed' and e['details']['task_id'].startswith('map'))
    reduce_assignments = [i for i, e in enumerate(events)
                          if e['event'] == 'task_assigned' and e['details']['task_id'].startswith('reduce')]
    assert reduce_assignments
    assert min(reduce_assignments) > last_map_done


def test_unknown_task_rejected():
    ledger = make_ledger()

    with pytest.raises(UnknownTaskError):
        ledger.mark_done(TaskKind.MAP, 3, "w")
    with pytest.raises(UnknownTaskError):
        ledger.mark_done(TaskKind.REDUCE, -1, "w")


def test_n_reduce_must_be_positive():
    with pytest.raises(ValueError):
        TaskLedger(["a.txt"], 0)


def test_no_input_files_starts_in_reduce_phase():
    ledger = TaskLedger([], 2)

    assert ledger.get_phase() is Phase.REDUCING
    reply = ledger.next_task("w")
    assert reply.kind is ReplyKind.REDUCE
    assert reply.n_map == 0


def test_corrupted_ledger_is_fatal():
    ledger = make_ledger(n_map=1, n_reduce=1)
    run_phase(ledger, TaskKind.MAP)
    ledger.next_task("w")
    # Simulate a bug that regressed a completed map task
    ledger.map_tasks[0].state = TaskState.IDLE

    with pytest.raises(LedgerCorruptionError):
        ledger.mark_done(TaskKind.REDUCE, 0, "w")


def test_progress_counts():
    ledger = make_ledger()
    ledger.next_task("w0")
    ledger.next_task("w1")
    ledger.mark_done(TaskKind.MAP, 0, "w0")

    progress = ledger.progress()

    assert progress['phase'] == 'mapping'
    assert progress['done'] is False
    assert progress['map']['completed'] == 1
    assert progress['map']['in_progress'] == 1
    assert progress['map']['idle'] == 1
    assert progress['map']['total'] == 3
    assert progress['map']['running'] == [{'task_id': 'map-1', 'worker_id': 'w1'}]
    assert progress['reduce']['idle'] == 2
