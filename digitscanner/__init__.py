"""
digitscanner package
~~~~~~~~~~~~~~~~~~~~

Feedforward neural network engine for MNIST digit recognition.
Contains the matrix and network implementation, the SGD training driver,
the MNIST loader, model persistence, the command line and the API server.
"""

from digitscanner.exceptions import (
    DigitScannerError,
    ShapeMismatchError,
    InvalidTopologyError,
    InvalidTrainingInputError
)
from digitscanner.matrix import Matrix
from digitscanner.network import Network
from digitscanner.training import train

__version__ = "1.0.0"

__all__ = [
    'DigitScannerError',
    'ShapeMismatchError',
    'InvalidTopologyError',
    'InvalidTrainingInputError',
    'Matrix',
    'Network',
    'train'
]
