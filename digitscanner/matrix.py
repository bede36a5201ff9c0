"""
matrix.py
~~~~~~~~~

Dense 2-D matrix used as the computational substrate of the network.

The matrix wraps a numpy array and exposes the small set of operations the
network needs. Arithmetic operators mutate in place where the network relies
on it (``+=``, ``-=``, ``*=``) and the matrix product always returns a new
matrix. Every binary operation checks shapes and raises
:class:`ShapeMismatchError` instead of letting numpy broadcast.
"""

from typing import Iterable, List, Tuple, Union

import numpy as np

from digitscanner.exceptions import ShapeMismatchError

Scalar = Union[int, float, np.number]


def _require_same_shape(a: 'Matrix', b: 'Matrix', operation: str) -> None:
    if not isinstance(b, Matrix):
        raise TypeError(
            f"Cannot {operation} a Matrix and a {type(b).__name__}"
        )
    if a.shape != b.shape:
        raise ShapeMismatchError(
            f"Cannot {operation} matrices of shapes {a.shape} and {b.shape}"
        )


class Matrix:
    """
    Rectangular grid of floating point values with I rows and J columns.

    A freshly constructed matrix is zero-filled. The backing array is owned
    exclusively by the matrix; use :meth:`copy` when an independent instance
    is needed.
    """

    __slots__ = ('_data',)

    def __init__(self, I: int, J: int, dtype=np.float64):
        """
        Create a zero-filled matrix.

        Args:
            I: Number of rows (must be positive)
            J: Number of columns (must be positive)
            dtype: numpy floating point type of the elements

        Raises:
            ShapeMismatchError: If a dimension is not positive
        """
        if int(I) <= 0 or int(J) <= 0:
            raise ShapeMismatchError(
                f"Matrix dimensions must be positive, got ({I}, {J})"
            )
        self._data = np.zeros((int(I), int(J)), dtype=dtype)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def _wrap(cls, array: np.ndarray) -> 'Matrix':
        """Wrap an array without copying it. The caller gives up ownership."""
        matrix = cls.__new__(cls)
        matrix._data = array
        return matrix

    @classmethod
    def from_array(cls, values, dtype=None) -> 'Matrix':
        """
        Build a matrix holding a copy of a 2-D array-like.

        Args:
            values: Anything numpy can turn into a 2-D array
            dtype: Element type; defaults to the array's floating type

        Returns:
            Matrix: A new matrix

        Raises:
            ShapeMismatchError: If the values are not 2-D or are empty
        """
        array = np.array(values, dtype=dtype, copy=True)
        if not np.issubdtype(array.dtype, np.floating):
            array = array.astype(np.float64)
        if array.ndim != 2 or array.size == 0:
            raise ShapeMismatchError(
                f"Expected a non-empty 2-D array, got shape {array.shape}"
            )
        return cls._wrap(array)

    @classmethod
    def column(cls, values: Iterable[float], dtype=np.float64) -> 'Matrix':
        """Build a column vector (n x 1) from a flat sequence of values."""
        array = np.asarray(list(values), dtype=dtype).reshape(-1, 1)
        return cls.from_array(array)

    @classmethod
    def zeros(cls, I: int, J: int, dtype=np.float64) -> 'Matrix':
        return cls(I, J, dtype=dtype)

    @classmethod
    def filled(cls, I: int, J: int, value: Scalar,
               dtype=np.float64) -> 'Matrix':
        matrix = cls(I, J, dtype=dtype)
        matrix.fill(value)
        return matrix

    def copy(self) -> 'Matrix':
        """Return a deep copy of this matrix."""
        return Matrix._wrap(self._data.copy())

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def I(self) -> int:
        return self._data.shape[0]

    @property
    def J(self) -> int:
        return self._data.shape[1]

    @property
    def shape(self) -> Tuple[int, int]:
        return self._data.shape

    @property
    def dtype(self):
        return self._data.dtype

    @property
    def array(self) -> np.ndarray:
        """The backing numpy array (shared, not copied)."""
        return self._data

    def flat(self) -> List[float]:
        """Return the elements in row-major order as Python floats."""
        return [float(v) for v in self._data.ravel()]

    def argmax(self) -> int:
        """Return the row index of the largest element of a column vector."""
        if self.J != 1:
            raise ShapeMismatchError(
                f"argmax expects a column vector, got shape {self.shape}"
            )
        return int(np.argmax(self._data[:, 0]))

    def __getitem__(self, index: Tuple[int, int]) -> float:
        i, j = self._check_index(index)
        return float(self._data[i, j])

    def __setitem__(self, index: Tuple[int, int], value: Scalar) -> None:
        i, j = self._check_index(index)
        self._data[i, j] = value

    def _check_index(self, index) -> Tuple[int, int]:
        i, j = index
        if not (0 <= i < self.I and 0 <= j < self.J):
            raise IndexError(
                f"Index ({i}, {j}) out of range for shape {self.shape}"
            )
        return i, j

    def __len__(self) -> int:
        return self.I

    def __repr__(self) -> str:
        return f"Matrix({self.I}x{self.J}, dtype={self.dtype})"

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def __iadd__(self, other: 'Matrix') -> 'Matrix':
        _require_same_shape(self, other, 'add')
        self._data += other._data
        return self

    def __isub__(self, other: 'Matrix') -> 'Matrix':
        _require_same_shape(self, other, 'subtract')
        self._data -= other._data
        return self

    def __add__(self, other: 'Matrix') -> 'Matrix':
        result = self.copy()
        result += other
        return result

    def __sub__(self, other: 'Matrix') -> 'Matrix':
        result = self.copy()
        result -= other
        return result

    def __imul__(self, scalar: Scalar) -> 'Matrix':
        if isinstance(scalar, Matrix):
            raise TypeError(
                "Use '@' for matrix products and element_wise_product() "
                "for Hadamard products"
            )
        if isinstance(scalar, bool) or np.ndim(scalar) != 0:
            raise TypeError(
                f"Matrices can only be scaled by a number, got "
                f"{type(scalar).__name__}"
            )
        self._data *= scalar
        return self

    def __mul__(self, scalar: Scalar) -> 'Matrix':
        result = self.copy()
        result *= scalar
        return result

    __rmul__ = __mul__

    def __matmul__(self, other: 'Matrix') -> 'Matrix':
        """Matrix product producing a new (self.I x other.J) matrix."""
        if not isinstance(other, Matrix):
            raise TypeError(
                f"Cannot multiply a Matrix and a {type(other).__name__}"
            )
        if self.J != other.I:
            raise ShapeMismatchError(
                f"Cannot multiply matrices of shapes {self.shape} "
                f"and {other.shape}"
            )
        return Matrix._wrap(self._data @ other._data)

    def element_wise_product(self, other: 'Matrix') -> 'Matrix':
        """Hadamard product, in place."""
        _require_same_shape(self, other, 'take the element-wise product of')
        self._data *= other._data
        return self

    def transpose(self) -> 'Matrix':
        """Return a new matrix holding the transpose."""
        return Matrix._wrap(np.ascontiguousarray(self._data.T))

    def self_transpose(self) -> 'Matrix':
        """Transpose in place; the shape of this matrix changes."""
        self._data = np.ascontiguousarray(self._data.T)
        return self

    def sigmoid(self) -> 'Matrix':
        """
        Apply the logistic function 1/(1+e^-x) to every element, in place.

        Large negative inputs overflow ``exp`` to infinity, which yields an
        exact 0 after the reciprocal; numpy's overflow warning is silenced.
        """
        data = self._data
        with np.errstate(over='ignore', under='ignore'):
            np.negative(data, out=data)
            np.exp(data, out=data)
            data += 1.0
            np.reciprocal(data, out=data)
        return self

    def fill(self, value: Scalar) -> 'Matrix':
        self._data.fill(value)
        return self

    def assign(self, values) -> 'Matrix':
        """
        Overwrite every element with ``values``, in place.

        Args:
            values: A Matrix or array-like of exactly this shape

        Raises:
            ShapeMismatchError: If the shapes differ
        """
        source = values._data if isinstance(values, Matrix) \
            else np.asarray(values)
        if source.shape != self.shape:
            raise ShapeMismatchError(
                f"Cannot assign values of shape {source.shape} "
                f"to a matrix of shape {self.shape}"
            )
        self._data[...] = source
        return self

    def allclose(self, other: 'Matrix', rtol: float = 1e-5,
                 atol: float = 1e-8) -> bool:
        """Return True if both matrices have the same shape and close values."""
        return (self.shape == other.shape
                and bool(np.allclose(self._data, other._data,
                                     rtol=rtol, atol=atol)))


def as_matrix(values, dtype=None) -> Matrix:
    """
    Return ``values`` as a Matrix.

    Matrices are returned unchanged; numpy arrays and nested sequences are
    copied into a new matrix. A 1-D sequence becomes a column vector.
    """
    if isinstance(values, Matrix):
        return values
    array = np.asarray(values, dtype=dtype)
    if array.ndim == 1:
        array = array.reshape(-1, 1)
    return Matrix.from_array(array, dtype=dtype)
