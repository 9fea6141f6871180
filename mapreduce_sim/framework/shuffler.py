from collections import defaultdict


class ShufflePhase:
    """Groups intermediate data from every map task by key"""

    def group(self, partition_files):
        """Merge the per-map-task dicts of one partition

        Args:
            partition_files: Iterable of {key: [values]} dicts

        Returns:
            Dict of {key: [value1, value2, ...]}
        """
        grouped_data = defaultdict(list)

        for partition_data in partition_files:
            for key, values in partition_data.items():
                grouped_data[key].extend(values)

        return dict(grouped_data)

    def sort_by_key(self, grouped_data):
        """Sort grouped data by key

        Args:
            grouped_data: Dict of {key: [values]}

        Returns:
            List of (key, [values]) tuples sorted by key
        """
        return sorted(grouped_data.items())
