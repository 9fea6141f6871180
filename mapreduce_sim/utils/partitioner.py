import hashlib


class Partitioner:
    """Hash-based partitioning for intermediate keys.

    Python's built-in ``hash`` is salted per process, so two workers would
    disagree on where a key lives. md5 of the key's text is stable everywhere.
    """

    def __init__(self, num_partitions):
        if num_partitions < 1:
            raise ValueError(f"num_partitions must be >= 1, got {num_partitions}")
        self.num_partitions = num_partitions

    def get_partition(self, key):
        """Get partition ID for a key (hash(key) mod R)."""
        key_str = str(key)
        hash_value = int(hashlib.md5(key_str.encode('utf-8')).hexdigest(), 16)
        return hash_value % self.num_partitions
