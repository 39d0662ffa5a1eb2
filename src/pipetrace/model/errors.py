"""
Error Taxonomy
==============
Validation errors are always recoverable: the route model catches them and
reports them through an OperationResult. Sensor errors never leave the fusion
engine; they only lower the fidelity level.
"""


class PipeTraceError(Exception):
    """Base class for all domain errors."""


class ValidationError(PipeTraceError, ValueError):
    """Bad user input (memo, distance, index)."""


class CountExceeded(ValidationError):
    pass


class InvalidMemo(ValidationError):
    pass


class InvalidSegment(ValidationError):
    pass


class InvalidDistance(ValidationError):
    pass


class InvalidIndex(ValidationError):
    pass


class PointNotFound(ValidationError):
    pass


class SensorUnavailable(PipeTraceError):
    """No API, permission denied, timeout or hardware read failure."""


class ProjectFileError(PipeTraceError):
    """A project file could not be read or has the wrong structure."""
