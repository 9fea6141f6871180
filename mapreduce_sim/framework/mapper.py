from collections import defaultdict


class MapPhase:
    """Handles the map phase of MapReduce"""

    def __init__(self, map_function, partitioner):
        """
        Args:
            map_function: User-defined map function(filename, contents) -> [(k', v'), ...]
            partitioner: Partitioner instance for intermediate keys
        """
        self.map_function = map_function
        self.partitioner = partitioner

    def execute(self, input_key, input_value):
        """Execute map function and partition results

        Keys are stored as text: intermediate files are JSON objects, and the
        final output writes keys literally anyway. Keys with the same text
        are the same key, so ``1`` and ``"1"`` reach a single reduce call.

        Args:
            input_key: Input key (the input filename)
            input_value: Input value (the file contents)

        Returns:
            List of dicts, one per partition: [{k': [v', ...]}, ...]
        """
        intermediate_pairs = self.map_function(input_key, input_value)

        partitions = [defaultdict(list) for _ in range(self.partitioner.num_partitions)]

        for key, value in intermediate_pairs:
            key = str(key)
            partitions[self.partitioner.get_partition(key)][key].append(value)

        return [dict(p) for p in partitions]
