import threading

from mapreduce_sim.utils.logger import get_logger

logger = get_logger(__name__)


class TimeoutSweeper:
    """Periodically resets tasks whose assignment has gone stale.

    Runs independently of RPC traffic so a job whose workers have all died
    still gets its tasks back into the Idle pool.
    """

    def __init__(self, ledger, interval=1.0):
        self.ledger = ledger
        self.interval = interval
        self._stop = threading.Event()
        self._thread = None
        self.on_error = None  # Called with the exception if a sweep raises

    def run(self):
        """Main sweeping loop"""
        logger.info(f"Timeout sweeper started (every {self.interval}s, "
                    f"timeout {self.ledger.task_timeout}s)")

        while not self._stop.wait(self.interval):
            try:
                self.ledger.sweep_timeouts()
            except Exception as e:
                logger.critical(f"Timeout sweep failed: {e}")
                if self.on_error:
                    self.on_error(e)
                return

    def start(self):
        self._thread = threading.Thread(target=self.run, name="timeout-sweeper", daemon=True)
        self._thread.start()

    def stop(self):
        """Stop the sweeper"""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 1)
