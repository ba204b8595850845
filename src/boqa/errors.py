"""Error types raised by the ranking engine."""


class BOQAError(Exception):
    """Base error for all boqa failures."""


class StructuralError(BOQAError):
    """The term graph or item universe cannot be used for inference."""


class CyclicGraphError(StructuralError):
    """The term graph contains a cycle, so no topological order exists."""


class EmptyItemUniverseError(StructuralError):
    """No items remain after filtering."""


class UnknownTermError(BOQAError, KeyError):
    """A term id is referenced that is not part of the term graph."""


class ConfigurationError(BOQAError, ValueError):
    """Invalid engine configuration."""


class WorkerError(BOQAError):
    """A parallel scoring unit failed."""
