"""
exceptions.py
~~~~~~~~~~~~~

Error types raised by the network engine and its collaborators.

Contract violations (bad shapes, bad topologies, bad training input) are
programming errors: they are raised before any numeric work starts and are
never recovered in place.
"""


class DigitScannerError(Exception):
    """Base class for every error raised by the package."""


class ShapeMismatchError(DigitScannerError, ValueError):
    """A matrix operation was invoked on incompatible dimensions."""


class InvalidTopologyError(DigitScannerError, ValueError):
    """A network was constructed with an unusable list of layer sizes."""


class InvalidTrainingInputError(DigitScannerError, ValueError):
    """A training call received examples or parameters it cannot use."""


class DatasetFormatError(DigitScannerError, ValueError):
    """An IDX dataset file is malformed or truncated."""


class ModelFormatError(DigitScannerError, ValueError):
    """A persisted network does not match the expected text layout."""
