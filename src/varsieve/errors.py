"""Exception hierarchy.

Every error below is fatal for the whole run: nothing is skipped or retried,
because a silently misread genotype is worse than a failed run.
"""

from __future__ import annotations


class VarsieveError(Exception):
    """Base class for all varsieve errors."""


class MalformedRecordError(VarsieveError, ValueError):
    """A header, coordinate, genotype or FORMAT declaration could not be parsed."""


class ConfigurationError(VarsieveError):
    """Bad setup detected before processing starts (scratch dir exists, missing fields...)."""


class CacheSchemaError(ConfigurationError):
    """The annotation cache was built with a different annotation schema."""


class WorkerFailedError(VarsieveError, RuntimeError):
    """A batch worker failed; the run was aborted."""


class IncompleteAnnotationError(VarsieveError):
    """The annotation tool output ended while cache misses were still outstanding."""
