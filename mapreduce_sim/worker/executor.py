import os

from mapreduce_sim.framework.mapper import MapPhase
from mapreduce_sim.framework.reducer import ReducePhase, format_output
from mapreduce_sim.framework.shuffler import ShufflePhase
from mapreduce_sim.utils.fileio import atomic_write
from mapreduce_sim.utils.partitioner import Partitioner
from mapreduce_sim.worker.intermediate import IntermediateStore, output_filename


class TaskExecutor:
    """Executes map and reduce tasks against files in a shared work directory.

    Based on Google MapReduce paper:
    - Map tasks: Apply map function, partition output into R intermediate files
    - Reduce tasks: Read intermediate data, shuffle/sort, apply reduce function

    Nothing is kept between tasks except the files written, so running the
    same task twice (a straggler plus its replacement) writes the same bytes
    to the same names.

    Contract for user callbacks: map keys are converted with ``str()`` (so
    ``1`` and ``"1"`` are one key), and map values must be JSON-encodable.
    Values reach ``reduce_function`` as decoded JSON, so tuples arrive as
    lists. A value that cannot be encoded fails the map task with
    ``IntermediateEncodingError`` naming the key.
    """

    def __init__(self, map_function, reduce_function, workdir='.'):
        """
        Args:
            map_function: User-defined map function(filename, contents) -> [(k, v), ...]
            reduce_function: User-defined reduce function(key, values) -> value
            workdir: Directory for intermediate and final output files
        """
        self.map_function = map_function
        self.reduce_function = reduce_function
        self.workdir = workdir

        self.store = IntermediateStore(workdir)
        self.reduce_phase = ReducePhase(reduce_function)
        self.shuffle_phase = ShufflePhase()

    def execute_map(self, map_index, input_path, n_reduce):
        """Execute a map task.

        1. Read the whole input file
        2. Apply user's map function
        3. Partition output into R buckets using hash(key) mod R
        4. Write every bucket to mr-<map_index>-<r>

        Returns:
            dict: {partition_id: file_path} for the intermediate files
        """
        with open(input_path, 'r', encoding='utf-8') as f:
            contents = f.read()

        map_phase = MapPhase(self.map_function, Partitioner(n_reduce))
        partitions = map_phase.execute(input_path, contents)

        return self.store.write_partitioned_output(map_index, partitions)

    def execute_reduce(self, partition_id, n_map):
        """Execute a reduce task.

        1. Read mr-<m>-<partition_id> for every map task m
        2. Group values by key (shuffle)
        3. Sort by key
        4. Apply reduce function to each (key, [values]) group
        5. Write "key value" lines to mr-out-<partition_id>

        Returns:
            str: Path of the output file
        """
        grouped_data = self.shuffle_phase.group(self.store.read_partition(partition_id, n_map))
        sorted_data = self.shuffle_phase.sort_by_key(grouped_data)
        results = self.reduce_phase.execute(sorted_data)

        output_path = os.path.join(self.workdir, output_filename(partition_id))
        return atomic_write(output_path, format_output(results))
