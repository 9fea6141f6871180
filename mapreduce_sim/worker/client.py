import argparse
import os
import sys
import time

import grpc

from mapreduce_sim import config, rpc
from mapreduce_sim.apps.loader import load_app
from mapreduce_sim.utils.logger import get_logger
from .executor import TaskExecutor

logger = get_logger(__name__)

# Reasons Worker.run() returns
EXIT_JOB_DONE = 'job_done'
EXIT_COORDINATOR_GONE = 'coordinator_gone'
EXIT_UNREACHABLE = 'unreachable'
EXIT_REJECTED = 'rejected'
EXIT_SIMULATED_FAILURE = 'simulated_failure'
EXIT_STOPPED = 'stopped'


class Worker:
    """Worker that polls the coordinator for tasks and executes them.

    Based on Google MapReduce paper:
    - Workers ask the coordinator for work; the coordinator never calls them
    - Map tasks produce intermediate files partitioned by reduce key
    - Reduce tasks read those files, shuffle, and reduce

    The worker holds no job state. Anything it learns about the job comes
    with each task assignment.
    """

    def __init__(self, worker_id, map_function, reduce_function,
                 coordinator_address=None, workdir=None,
                 wait_interval=None, connect_timeout=config.DEFAULT_CONNECT_TIMEOUT,
                 rpc_timeout=config.DEFAULT_RPC_TIMEOUT, fail_after=None):
        self.worker_id = worker_id
        self.coordinator_address = coordinator_address or config.coordinator_address()
        self.wait_interval = config.wait_interval() if wait_interval is None else wait_interval
        self.connect_timeout = connect_timeout
        self.rpc_timeout = rpc_timeout
        self.fail_after = fail_after  # For testing fault tolerance

        self.running = True
        self.tasks_completed = 0
        self.current_task = None
        self.contacted = False  # True once any RPC has succeeded

        self.executor = TaskExecutor(map_function, reduce_function,
                                     workdir=workdir or config.workdir())

        # Keep reconnect back-off short so a coordinator that starts late is
        # noticed on the next poll
        self.channel = grpc.insecure_channel(self.coordinator_address, options=[
            ('grpc.initial_reconnect_backoff_ms', 200),
            ('grpc.max_reconnect_backoff_ms', 1000),
        ])
        self.stub = rpc.CoordinatorStub(self.channel)

        logger.info(f"Worker {worker_id} starting, coordinator at {self.coordinator_address}")

    def request_task(self):
        """Request a task from the coordinator.

        Raises:
            grpc.RpcError: the call failed
        """
        return self.stub.RequestTask(
            rpc.TaskRequest(worker_id=self.worker_id),
            timeout=self.rpc_timeout
        )

    def report_done(self, assignment):
        """Report task completion to the coordinator.

        Raises:
            grpc.RpcError: the call failed
        """
        return self.stub.ReportTaskDone(
            rpc.TaskDoneReport(
                worker_id=self.worker_id,
                kind=assignment.kind,
                task_index=assignment.task_index
            ),
            timeout=self.rpc_timeout
        )

    def execute_task(self, assignment):
        """Execute a map or reduce task.

        A failure here (user callback raised, input unreadable) is not
        reported. The task stays assigned to us until the coordinator times
        it out and gives it to someone else.

        Returns:
            True if the task ran to completion
        """
        task_id = f"{assignment.kind}-{assignment.task_index}"
        self.current_task = task_id

        logger.info(f"Worker {self.worker_id} executing {task_id}")

        try:
            if assignment.kind == 'map':
                self.executor.execute_map(
                    assignment.task_index,
                    assignment.input_paths[0],
                    assignment.n_reduce
                )
            else:
                self.executor.execute_reduce(assignment.task_index, assignment.n_map)
            return True
        except Exception:
            logger.exception(f"Worker {self.worker_id} failed {task_id}, leaving it to time out")
            return False
        finally:
            self.current_task = None

    def _should_give_up(self, error, started_at):
        """Decide whether a failed RPC ends this worker.

        Returns:
            Exit reason, or None to keep going
        """
        code = error.code() if hasattr(error, 'code') else None

        if code == grpc.StatusCode.INVALID_ARGUMENT:
            logger.error(f"Worker {self.worker_id} rejected by coordinator: {error.details()}")
            return EXIT_REJECTED

        if self.contacted:
            logger.info(f"Worker {self.worker_id} lost the coordinator ({code}), assuming job is over")
            return EXIT_COORDINATOR_GONE

        if time.monotonic() - started_at >= self.connect_timeout:
            logger.error(f"Worker {self.worker_id} could not reach coordinator at "
                         f"{self.coordinator_address} within {self.connect_timeout}s")
            return EXIT_UNREACHABLE

        logger.info(f"Worker {self.worker_id} waiting for coordinator ({code})")
        return None

    def run(self):
        """Main worker loop.

        Returns:
            Why the loop ended (one of the EXIT_* constants)
        """
        started_at = time.monotonic()
        reason = EXIT_STOPPED

        while self.running:
            if self.fail_after is not None and self.tasks_completed >= self.fail_after:
                logger.warning(f"Worker {self.worker_id} SIMULATING FAILURE after "
                               f"{self.tasks_completed} tasks")
                reason = EXIT_SIMULATED_FAILURE
                break

            try:
                assignment = self.request_task()
            except grpc.RpcError as e:
                give_up = self._should_give_up(e, started_at)
                if give_up:
                    reason = give_up
                    break
                time.sleep(self.wait_interval)
                continue

            self.contacted = True

            if assignment.kind == 'exit':
                logger.info(f"Worker {self.worker_id} told the job is done")
                reason = EXIT_JOB_DONE
                break

            if assignment.kind == 'wait':
                time.sleep(self.wait_interval)
                continue

            if not self.execute_task(assignment):
                continue

            try:
                ack = self.report_done(assignment)
            except grpc.RpcError as e:
                give_up = self._should_give_up(e, started_at)
                if give_up:
                    reason = give_up
                    break
                continue

            self.tasks_completed += 1
            if ack.accepted:
                logger.info(f"Worker {self.worker_id} completed {assignment.kind}-{assignment.task_index}")
            else:
                logger.info(f"Worker {self.worker_id} finished {assignment.kind}-{assignment.task_index} "
                            f"too late, result discarded")

        self.channel.close()
        logger.info(f"Worker {self.worker_id} shutting down ({reason})")
        return reason

    def stop(self):
        self.running = False


def start_worker(worker_id, app='wordcount', coordinator_address=None, workdir=None,
                 fail_after=None):
    """Start a worker in this process and run it until the job ends."""
    map_function, reduce_function = load_app(app)
    worker = Worker(worker_id, map_function, reduce_function,
                    coordinator_address=coordinator_address, workdir=workdir,
                    fail_after=fail_after)
    try:
        return worker.run()
    except KeyboardInterrupt:
        logger.info(f"Worker {worker_id} interrupted")
        worker.stop()
        return EXIT_STOPPED


def main(argv=None):
    parser = argparse.ArgumentParser(description='MapReduce Worker')
    parser.add_argument('worker_id', nargs='?', default=f'worker-{os.getpid()}',
                        help='Worker identifier (defaults to worker-<pid>)')
    parser.add_argument('--app', '-a', default='wordcount',
                        help='Application module providing map_fn and reduce_fn')
    parser.add_argument('--address', default=None,
                        help='Coordinator address (default $MAPREDUCE_COORDINATOR_ADDRESS)')
    parser.add_argument('--workdir', '-w', default=None,
                        help='Directory for intermediate and output files')
    parser.add_argument('--fail-after', type=int, default=None,
                        help='Simulate a crash after this many tasks')
    args = parser.parse_args(argv)

    reason = start_worker(args.worker_id, app=args.app, coordinator_address=args.address,
                          workdir=args.workdir, fail_after=args.fail_after)
    return 1 if reason in (EXIT_UNREACHABLE, EXIT_REJECTED) else 0


if __name__ == '__main__':
    sys.exit(main())
