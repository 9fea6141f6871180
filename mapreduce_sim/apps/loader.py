import importlib

from mapreduce_sim.errors import MapReduceError


def load_app(name):
    """Import a MapReduce application and return its (map_fn, reduce_fn).

    ``name`` is either a bundled app (``wordcount``, ``indexer``) or a dotted
    module path. The module must define ``map_fn(filename, contents)`` and
    ``reduce_fn(key, values)``.
    """
    module_name = name if '.' in name else f'mapreduce_sim.apps.{name}'
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise MapReduceError(f"Cannot load MapReduce app {name!r}: {e}") from e

    try:
        return module.map_fn, module.reduce_fn
    except AttributeError as e:
        raise MapReduceError(f"App {name!r} must define map_fn and reduce_fn") from e
