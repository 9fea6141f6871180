"""
MapReduce Coordinator Server

The single process workers talk to. It:
1. Hands out Map tasks, then Reduce tasks once every Map task is done
2. Accepts completion reports, discarding stale ones
3. Sweeps for timed-out tasks in the background and makes them assignable again
4. Answers Done() so the launching program knows when to stop
5. Optionally exposes an HTTP status endpoint
"""

import argparse
import os
import sys
import time
from concurrent import futures

import grpc

from mapreduce_sim import config, rpc
from mapreduce_sim.errors import LedgerCorruptionError, ProtocolError, UnknownTaskError
from mapreduce_sim.utils.chunker import chunk_inputs
from mapreduce_sim.utils.logger import get_logger
from mapreduce_sim.worker.intermediate import IntermediateStore
from .ledger import Report, TaskKind, TaskLedger
from .monitor import TimeoutSweeper
from .status import StatusServer

logger = get_logger(__name__)


class CoordinatorService(rpc.CoordinatorServicer):
    """gRPC handlers. Every request is validated before it reaches the ledger."""

    def __init__(self, ledger, on_fatal=None):
        self.ledger = ledger
        self.on_fatal = on_fatal

    def _parse(self, message_cls, request, context):
        try:
            message = message_cls.from_dict(request)
            if message.protocol_version != config.PROTOCOL_VERSION:
                raise ProtocolError(
                    f"unsupported protocol version {message.protocol_version} "
                    f"(coordinator speaks {config.PROTOCOL_VERSION})")
        except ProtocolError as e:
            logger.warning(f"Rejected malformed {message_cls.__name__}: {e}")
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, str(e))
        return message

    def _fatal(self, error, context):
        logger.critical(f"Task ledger corrupted, aborting job: {error}")
        if self.on_fatal:
            self.on_fatal(error)
        context.abort(grpc.StatusCode.INTERNAL, f"coordinator state corrupted: {error}")

    def RequestTask(self, request, context):
        """Assign a task to a worker."""
        message = self._parse(rpc.TaskRequest, request, context)

        try:
            reply = self.ledger.next_task(message.worker_id)
        except LedgerCorruptionError as e:
            self._fatal(e, context)

        return rpc.TaskAssignment(
            kind=reply.kind.value,
            task_index=reply.task_index,
            input_paths=list(reply.input_paths),
            n_map=reply.n_map,
            n_reduce=reply.n_reduce
        )

    def ReportTaskDone(self, request, context):
        """Receive task completion from worker."""
        message = self._parse(rpc.TaskDoneReport, request, context)

        try:
            report = self.ledger.mark_done(TaskKind(message.kind), message.task_index,
                                           message.worker_id)
        except UnknownTaskError as e:
            logger.warning(f"Rejected report from {message.worker_id}: {e}")
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, str(e))
        except LedgerCorruptionError as e:
            self._fatal(e, context)

        return rpc.TaskAck(accepted=report is Report.ACCEPTED)

    def Done(self, request, context):
        return rpc.DoneReply(done=self.ledger.is_done())


class Coordinator:
    """Owns the ledger, the timeout sweeper and the RPC server for one job."""

    def __init__(self, input_files, n_reduce, address='[::]:50051',
                 task_timeout=config.DEFAULT_TASK_TIMEOUT,
                 sweep_interval=config.DEFAULT_SWEEP_INTERVAL,
                 status_port=None, max_workers=10):
        self.ledger = TaskLedger(input_files, n_reduce, task_timeout=task_timeout)
        self.fatal_error = None

        self.service = CoordinatorService(self.ledger, on_fatal=self._on_fatal)
        self.sweeper = TimeoutSweeper(self.ledger, interval=sweep_interval)
        self.sweeper.on_error = self._on_fatal

        self.server = grpc.server(futures.ThreadPoolExecutor(max_workers=max_workers))
        rpc.add_CoordinatorServicer_to_server(self.service, self.server)
        # Port 0 lets the OS pick; add_insecure_port returns what was bound
        self.port = self.server.add_insecure_port(address)

        self.status_server = None
        if status_port is not None:
            self.status_server = StatusServer(self, port=status_port)

        logger.info(f"Coordinator initialized with M={self.ledger.n_map} R={n_reduce}, "
                    f"task timeout {task_timeout}s")

    def _on_fatal(self, error):
        if self.fatal_error is None:
            self.fatal_error = error

    def start(self):
        self.server.start()
        self.sweeper.start()
        if self.status_server:
            self.status_server.start()
        logger.info(f"Coordinator server started on port {self.port}")
        return self

    def done(self):
        return self.ledger.is_done()

    def wait_for_completion(self, poll_interval=1.0, timeout=None):
        """Block until the job is done, has failed fatally, or ``timeout`` expires.

        Returns:
            True if the job finished successfully
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self.fatal_error is not None:
                return False
            if self.done():
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(poll_interval)

    def stop(self, grace=None):
        logger.info("Shutting down coordinator server...")
        self.sweeper.stop()
        if self.status_server:
            self.status_server.stop()
        self.server.stop(grace).wait()


def serve(input_files, n_reduce, port=50051, status_port=None, split_lines=None,
          workdir='.', grace=3.0, keep_intermediate=False,
          task_timeout=config.DEFAULT_TASK_TIMEOUT,
          sweep_interval=config.DEFAULT_SWEEP_INTERVAL):
    """Run a coordinator until its job is done.

    Args:
        input_files: One map task per file (or per chunk with split_lines)
        n_reduce: Number of reduce tasks (R)
        port: gRPC port
        status_port: HTTP status port, None to disable
        split_lines: Chunk inputs into files of at most this many lines first
        workdir: Where chunks live and where intermediate files are cleaned up
        grace: Seconds to keep answering Exit after the job is done
        keep_intermediate: Leave mr-<m>-<r> files in place after the job

    Returns:
        Process exit status: 0 on success, 1 on fatal coordinator error
    """
    if split_lines:
        chunk_dir = os.path.join(workdir, 'chunks')
        input_files = chunk_inputs(input_files, chunk_dir, split_lines)
        logger.info(f"Split input into {len(input_files)} chunks of <= {split_lines} lines")

    coordinator = Coordinator(input_files, n_reduce, address=f'[::]:{port}',
                              task_timeout=task_timeout, sweep_interval=sweep_interval,
                              status_port=status_port)
    coordinator.start()

    try:
        ok = coordinator.wait_for_completion()
        if ok:
            logger.info(f"MapReduce job complete, serving Exit replies for {grace:.1f}s")
            time.sleep(grace)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        ok = False
    finally:
        coordinator.stop()

    if coordinator.fatal_error is not None:
        logger.error(f"Job aborted: {coordinator.fatal_error}")
        return 1

    if ok and not keep_intermediate:
        removed = IntermediateStore(workdir).cleanup()
        logger.info(f"Removed {removed} intermediate files")

    return 0 if ok else 1


def main(argv=None):
    parser = argparse.ArgumentParser(description='MapReduce Coordinator Server')
    parser.add_argument('inputs', nargs='+', help='Input files, one map task each')
    parser.add_argument('--reduce-tasks', '-r', type=int, default=3,
                        help='Number of reduce tasks (R)')
    parser.add_argument('--port', '-p', type=int, default=50051,
                        help='Server port')
    parser.add_argument('--status-port', type=int, default=None,
                        help='HTTP status port (disabled if omitted)')
    parser.add_argument('--split-lines', '-c', type=int, default=None,
                        help='Split inputs into chunks of at most this many lines')
    parser.add_argument('--workdir', '-w', default=config.workdir(),
                        help='Directory holding intermediate files')
    parser.add_argument('--grace', type=float, default=3.0,
                        help='Seconds to keep serving after the job is done')
    parser.add_argument('--keep-intermediate', action='store_true',
                        help='Do not delete intermediate files at the end')
    parser.add_argument('--task-timeout', type=float, default=config.task_timeout(),
                        help='Seconds before an in-progress task is reassigned')

    args = parser.parse_args(argv)

    return serve(
        args.inputs,
        args.reduce_tasks,
        port=args.port,
        status_port=args.status_port,
        split_lines=args.split_lines,
        workdir=args.workdir,
        grace=args.grace,
        keep_intermediate=args.keep_intermediate,
        task_timeout=args.task_timeout,
        sweep_interval=config.sweep_interval()
    )


if __name__ == '__main__':
    sys.exit(main())
