"""
Run a complete MapReduce job on this machine.

Starts a coordinator in this process, spawns worker processes, polls the
coordinator's Done() RPC until the job finishes, then shuts everything down.

Usage:
    python -m mapreduce_sim.launcher data/*.txt -r 2 -n 3 --app wordcount
"""

import argparse
import glob
import multiprocessing
import os
import sys
import time

import grpc

from mapreduce_sim import config, rpc
from mapreduce_sim.coordinator.server import Coordinator
from mapreduce_sim.utils.logger import get_logger
from mapreduce_sim.worker.client import start_worker
from mapreduce_sim.worker.intermediate import IntermediateStore

logger = get_logger(__name__)


def wait_until_done(address, poll_interval=1.0, timeout=None):
    """Poll the coordinator's Done() RPC.

    Returns:
        True once Done() reports true, False on timeout or if the
        coordinator stops answering
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    with grpc.insecure_channel(address) as channel:
        stub = rpc.CoordinatorStub(channel)
        while deadline is None or time.monotonic() < deadline:
            try:
                if stub.Done(rpc.DoneRequest(), timeout=config.DEFAULT_RPC_TIMEOUT).done:
                    return True
            except grpc.RpcError as e:
                logger.error(f"Done() query failed: {e.code()}")
                return False
            time.sleep(poll_interval)
    return False


def run_job(input_files, n_reduce, app='wordcount', n_workers=3, workdir='.',
            task_timeout=config.DEFAULT_TASK_TIMEOUT, timeout=None,
            keep_intermediate=False):
    """Run one job end to end.

    Args:
        input_files: Input file paths, one map task each
        n_reduce: Number of reduce tasks
        app: Application name passed to each worker
        n_workers: Worker processes to spawn
        workdir: Directory for intermediate and output files
        task_timeout: Seconds before a task is reassigned
        timeout: Give up on the job after this many seconds
        keep_intermediate: Leave mr-<m>-<r> files in workdir

    Returns:
        Sorted list of output file paths

    Raises:
        RuntimeError: the job did not finish
    """
    os.makedirs(workdir, exist_ok=True)
    coordinator = Coordinator(input_files, n_reduce, address='127.0.0.1:0',
                              task_timeout=task_timeout).start()
    address = f'127.0.0.1:{coordinator.port}'

    # gRPC does not survive fork() once the server is running
    context = multiprocessing.get_context('spawn')
    workers = [
        context.Process(
            target=start_worker,
            args=(f'worker-{i}', app, address, workdir),
            name=f'worker-{i}'
        )
        for i in range(n_workers)
    ]
    for process in workers:
        process.start()
    logger.info(f"Started {n_workers} workers against {address}")

    try:
        finished = wait_until_done(address, timeout=timeout)
        if finished:
            # Let workers collect their Exit replies
            for process in workers:
                process.join(timeout=config.DEFAULT_WAIT_INTERVAL * 3)
    finally:
        coordinator.stop()
        for process in workers:
            if process.is_alive():
                process.terminate()
            process.join()

    if coordinator.fatal_error is not None:
        raise RuntimeError(f"Job aborted: {coordinator.fatal_error}")
    if not finished:
        raise RuntimeError("Job did not finish")

    if not keep_intermediate:
        IntermediateStore(workdir).cleanup()

    return sorted(glob.glob(os.path.join(workdir, f'{config.OUTPUT_PREFIX}*')))


def main(argv=None):
    parser = argparse.ArgumentParser(description='Run a MapReduce job locally')
    parser.add_argument('inputs', nargs='+', help='Input files')
    parser.add_argument('--reduce-tasks', '-r', type=int, default=3,
                        help='Number of reduce tasks (R)')
    parser.add_argument('--workers', '-n', type=int, default=3,
                        help='Number of worker processes')
    parser.add_argument('--app', '-a', default='wordcount',
                        help='Application module providing map_fn and reduce_fn')
    parser.add_argument('--workdir', '-w', default=config.workdir(),
                        help='Directory for intermediate and output files')
    parser.add_argument('--timeout', type=float, default=None,
                        help='Give up after this many seconds')
    args = parser.parse_args(argv)

    try:
        outputs = run_job(args.inputs, args.reduce_tasks, app=args.app,
                          n_workers=args.workers, workdir=args.workdir,
                          task_timeout=config.task_timeout(), timeout=args.timeout)
    except RuntimeError as e:
        logger.error(str(e))
        return 1

    for path in outputs:
        print(path)
    return 0


if __name__ == '__main__':
    sys.exit(main())
