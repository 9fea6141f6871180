class MapReduceError(Exception):
    """Base class for errors raised by the framework."""


class ProtocolError(MapReduceError):
    """A wire message is missing fields or carries values we cannot accept."""


class UnknownTaskError(MapReduceError):
    """A completion report names a task that does not exist in this job."""

    def __init__(self, kind, index):
        super().__init__(f"No such task: {kind} {index}")
        self.kind = kind
        self.index = index


class LedgerCorruptionError(MapReduceError):
    """The coordinator's task ledger violated one of its own invariants.

    This is the only fatal error class: the job is aborted when it is raised.
    """


class IntermediateEncodingError(MapReduceError):
    """Map output holds a value the intermediate files cannot store.

    Intermediate buckets are JSON, so values must be JSON-encodable.
    """

    def __init__(self, map_index, key, cause):
        super().__init__(f"Map task {map_index} emitted a value for key {key!r} "
                         f"that cannot be written as JSON: {cause}")
        self.map_index = map_index
        self.key = key
