import json
import os
import re

from mapreduce_sim.config import INTERMEDIATE_PREFIX, OUTPUT_PREFIX
from mapreduce_sim.errors import IntermediateEncodingError
from mapreduce_sim.utils.fileio import atomic_write

_INTERMEDIATE_RE = re.compile(rf"^{re.escape(INTERMEDIATE_PREFIX)}(\d+)-(\d+)$")
# Leftovers of atomic_write from a worker killed mid-write
_TEMP_RE = re.compile(rf"^\.{re.escape(INTERMEDIATE_PREFIX)}\d+-\d+\..+\.tmp$")


def intermediate_filename(map_index, partition_id):
    return f"{INTERMEDIATE_PREFIX}{map_index}-{partition_id}"


def output_filename(partition_id):
    return f"{OUTPUT_PREFIX}{partition_id}"


class IntermediateStore:
    """Map output files shared through the filesystem.

    File ``mr-<m>-<r>`` holds the part of map task ``m``'s output that hashes
    to reduce partition ``r``. The name alone says who owns it, so writers
    never need a lock; each write is atomic, so readers never see half a file.
    """

    def __init__(self, base_dir='.'):
        self.base_dir = base_dir
        os.makedirs(base_dir, exist_ok=True)

    def path_for(self, map_index, partition_id):
        return os.path.join(self.base_dir, intermediate_filename(map_index, partition_id))

    def write_partitioned_output(self, map_index, partitions):
        """Write partitioned map output, one file per partition.

        Empty partitions are written too, so a reducer can tell "no keys"
        from "map output missing".

        Buckets are stored as JSON, so values must be JSON-encodable and come
        back to the reducer as their JSON equivalent (a tuple is read back as
        a list). Every bucket is encoded before any file is written.

        Args:
            map_index: Index of the map task
            partitions: List of dicts, one per partition: [{key: [values]}, ...]

        Returns:
            Dict of {partition_id: file_path}

        Raises:
            IntermediateEncodingError: a value cannot be encoded as JSON
        """
        encoded = [self._encode(map_index, data) for data in partitions]
        file_paths = {}

        for partition_id, text in enumerate(encoded):
            filepath = self.path_for(map_index, partition_id)
            atomic_write(filepath, text)
            file_paths[partition_id] = filepath

        return file_paths

    @staticmethod
    def _encode(map_index, data):
        try:
            return json.dumps(data, sort_keys=True)
        except (TypeError, ValueError):
            pass
        # Find the key whose values failed
        for key in sorted(data):
            try:
                json.dumps(data[key])
            except (TypeError, ValueError) as e:
                raise IntermediateEncodingError(map_index, key, e) from e
        raise IntermediateEncodingError(map_index, None, "unencodable partition")

    def read_intermediate_file(self, filepath):
        """Read an intermediate file"""
        with open(filepath, 'r', encoding='utf-8') as f:
            return json.load(f)

    def read_partition(self, partition_id, n_map):
        """Yield the contents of ``mr-<m>-<partition_id>`` for every map task.

        Raises:
            FileNotFoundError: a map task's output is missing
        """
        for map_index in range(n_map):
            yield self.read_intermediate_file(self.path_for(map_index, partition_id))

    def cleanup(self):
        """Delete every intermediate file in the store, plus any temp files
        a crashed writer left behind.

        Returns:
            Number of files removed
        """
        removed = 0
        for filename in os.listdir(self.base_dir):
            if _INTERMEDIATE_RE.match(filename) or _TEMP_RE.match(filename):
                os.remove(os.path.join(self.base_dir, filename))
                removed += 1
        return removed
