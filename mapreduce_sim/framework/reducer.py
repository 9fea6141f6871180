class ReducePhase:
    """Handles the reduce phase of MapReduce"""

    def __init__(self, reduce_function):
        """
        Args:
            reduce_function: User-defined reduce function(key, values) -> result
        """
        self.reduce_function = reduce_function

    def execute(self, sorted_data):
        """Execute reduce function once per key

        Args:
            sorted_data: List of (key, [values]) tuples

        Returns:
            List of (key, reduced_value) tuples in input order
        """
        return [(key, self.reduce_function(key, values)) for key, values in sorted_data]


def format_output(results):
    """Render reduce results as output file text: one "key value" line each."""
    return ''.join(f"{key} {value}\n" for key, value in results)
