"""
Runtime configuration.

Defaults live here as module constants; each one can be overridden by an
environment variable so the coordinator and workers can be pointed at each
other without touching code (same idea as MASTER_ADDRESS in a docker setup).
"""

import os


# Wire-level constants shared by coordinator and workers
PROTOCOL_VERSION = 1
INTERMEDIATE_PREFIX = "mr-"
OUTPUT_PREFIX = "mr-out-"

DEFAULT_ADDRESS = "localhost:50051"
DEFAULT_TASK_TIMEOUT = 10.0     # seconds before an in-progress task is reassigned
DEFAULT_SWEEP_INTERVAL = 1.0    # seconds between timeout sweeps
DEFAULT_WAIT_INTERVAL = 1.0     # worker back-off after a Wait reply
DEFAULT_CONNECT_TIMEOUT = 30.0  # how long a fresh worker retries an absent coordinator
DEFAULT_RPC_TIMEOUT = 5.0


def _env_float(name, default):
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def coordinator_address():
    return os.environ.get("MAPREDUCE_COORDINATOR_ADDRESS") or DEFAULT_ADDRESS


def task_timeout():
    return _env_float("MAPREDUCE_TASK_TIMEOUT", DEFAULT_TASK_TIMEOUT)


def sweep_interval():
    return _env_float("MAPREDUCE_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL)


def wait_interval():
    return _env_float("MAPREDUCE_WAIT_INTERVAL", DEFAULT_WAIT_INTERVAL)


def workdir():
    return os.environ.get("MAPREDUCE_WORKDIR") or "."


def log_level():
    return os.environ.get("MAPREDUCE_LOG_LEVEL", "INFO").upper()
