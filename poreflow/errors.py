"""
Sample-level error kinds.

Every failure that ends a sample is raised as a ``SampleError`` subclass so the
dataset iterator can record a tagged reason instead of a bare exception.
"""


class SampleError(Exception):
    """Base class for errors that fail a single sample"""

    kind = "SampleError"


class InputMissingOrMalformed(SampleError):
    """Pore table missing, unreadable, short, or holding non-numeric cells"""

    kind = "InputMissingOrMalformed"


class DegenerateGeometry(SampleError):
    """No valid primitives left after row filtering"""

    kind = "DegenerateGeometry"


class ConfigurationError(SampleError):
    """Boundary face absent or physics model rejected"""

    kind = "ConfigurationError"


class MeshingFailure(SampleError):
    """Mesher engine did not produce a usable volume mesh"""

    kind = "MeshingFailure"


class SolverDivergence(SampleError):
    """Flow solver engine crashed, diverged, or produced no usable fields"""

    kind = "SolverDivergence"


class ExportFailure(SampleError):
    """Result row could not be written"""

    kind = "ExportFailure"
