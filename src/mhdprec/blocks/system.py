"""
Block views of the global MHD linear system.

The fields are always ordered as (u, p, j, phi): velocity, pressure, current and
electric potential. The same ordering is used for the system matrix, the right-hand
side and the solution vector.
"""

from typing import Dict, Tuple

import attr
import numpy as np
import scipy.sparse as sp

FIELDS: Tuple[str, str, str, str] = ("u", "p", "j", "phi")

FieldKey = int | str


def _field_sizes(sizes) -> Tuple[int, ...]:
    return tuple(int(n) for n in sizes)


@attr.define(frozen=True)
class BlockLayout:
    """
    Sizes of the four field blocks of the MHD system.

    :param sizes:
        Number of degrees of freedom of (u, p, j, phi), in this order.
    """

    sizes: Tuple[int, ...] = attr.field(converter=_field_sizes)

    def __attrs_post_init__(self):
        if len(self.sizes) != len(FIELDS):
            raise ValueError(f"Expected {len(FIELDS)} field sizes, got {len(self.sizes)}")
        if any(n < 0 for n in self.sizes):
            raise ValueError(f"Field sizes must be non-negative, got {self.sizes}")

    @property
    def offsets(self) -> Tuple[int, ...]:
        """
        :return:
            Cumulative offsets, one more entry than there are fields.
        """
        return tuple(int(n) for n in np.concatenate(([0], np.cumsum(self.sizes))))

    @property
    def size(self) -> int:
        return int(sum(self.sizes))

    def field_index(self, key: FieldKey) -> int:
        if isinstance(key, str):
            if key not in FIELDS:
                raise ValueError(f"Unknown field '{key}', expected one of {FIELDS}")
            return FIELDS.index(key)
        index = int(key)
        if not 0 <= index < len(FIELDS):
            raise ValueError(f"Field index {key} out of range")
        return index

    def field_slice(self, key: FieldKey) -> slice:
        index = self.field_index(key)
        offsets = self.offsets
        return slice(offsets[index], offsets[index + 1])

    def allocate_field(self, key: FieldKey) -> np.ndarray:
        """
        Allocate a zeroed vector matching the row space of a field block.
        """
        return np.zeros(self.sizes[self.field_index(key)])


class BlockVector:
    """
    A flat vector partitioned into the (u, p, j, phi) field blocks.

    The blocks returned by :meth:`blocks` are views into ``values``, so in-place
    fills and accumulations on them update the global vector.

    :param values:
        Global vector of length ``layout.size``.

    :param layout:
        BlockLayout describing the field sizes.
    """

    def __init__(self, values: np.ndarray, layout: BlockLayout):
        values = np.asarray(values, dtype=float)
        if values.ndim != 1 or values.shape[0] != layout.size:
            raise ValueError(
                f"Vector of shape {values.shape} does not match block layout of size {layout.size}"
            )
        self.values = values
        self.layout = layout

    def __getitem__(self, key: FieldKey) -> np.ndarray:
        return self.values[self.layout.field_slice(key)]

    def blocks(self) -> Tuple[np.ndarray, ...]:
        return tuple(self[i] for i in range(len(FIELDS)))

    def fill(self, value: float) -> "BlockVector":
        self.values.fill(value)
        return self

    def copy(self) -> "BlockVector":
        return BlockVector(self.values.copy(), self.layout)

    def __len__(self) -> int:
        return self.layout.size


def allocate_block_vector(layout: BlockLayout) -> BlockVector:
    """
    Allocate a zeroed block vector for the given layout.
    """
    return BlockVector(np.zeros(layout.size), layout)


class BlockSystem:
    """
    A global sparse matrix partitioned into 4x4 field blocks.

    Blocks are extracted with ``A[i, j]`` where ``i`` and ``j`` are field indices or
    field names, e.g. ``A[0, 0]`` or ``A["u", "u"]`` for the velocity-velocity block.
    Extracted blocks are cached; the global matrix must not be modified in place
    after construction.

    :param matrix:
        Square sparse (or dense) matrix of size ``layout.size``.

    :param layout:
        BlockLayout describing the field sizes.
    """

    def __init__(self, matrix: sp.spmatrix | np.ndarray, layout: BlockLayout):
        csr = sp.csr_matrix(matrix)
        nrows, ncols = csr.shape
        if nrows != ncols:
            raise ValueError(f"Expected a square matrix, got shape {csr.shape}")
        if nrows != layout.size:
            raise ValueError(
                f"Matrix of size {nrows} does not match block layout of size {layout.size}"
            )
        self.matrix = csr
        self.layout = layout
        self._blocks: Dict[Tuple[int, int], sp.csr_matrix] = {}

    @property
    def shape(self) -> Tuple[int, int]:
        return self.matrix.shape

    def __getitem__(self, key: Tuple[FieldKey, FieldKey]) -> sp.csr_matrix:
        row, col = key
        index = (self.layout.field_index(row), self.layout.field_index(col))
        if index not in self._blocks:
            rows = self.layout.field_slice(index[0])
            cols = self.layout.field_slice(index[1])
            self._blocks[index] = self.matrix[rows, cols].tocsr()
        return self._blocks[index]

    def allocate_vector(self) -> BlockVector:
        return allocate_block_vector(self.layout)

    def matvec(self, x: np.ndarray) -> np.ndarray:
        return self.matrix @ np.asarray(x, dtype=float)
