import logging
from typing import Sequence, Tuple, Union

import numpy as np
import scipy.sparse

from naturalneighbor.errors import EmptyIndexError, InvalidShapeError
from naturalneighbor.kdtree import NUM_DIMENSIONS, KDTree, as_points
from naturalneighbor.scatter import griddata_inplace, scatter_weights

logger = logging.getLogger(__name__)

Range = Tuple[float, float, Union[float, complex]]


def griddata(
    known_points: np.ndarray,
    known_values: np.ndarray,
    interp_ranges: Sequence[Range],
) -> np.ndarray:
    """
    Interpolates function values on a regular 3D grid using discrete natural neighbor
    interpolation (Park et al., 2006), based on some known values of the function.

    The grid is described the same way as with :data:`numpy.mgrid`: each axis is given as a
    ``(start, stop, step)`` triple. A real step spaces the grid points by ``step`` and excludes
    ``stop``, while an imaginary step such as ``10j`` places that many points between ``start``
    and ``stop``, inclusive.

    Args:
        known_points: The points at which the function is known. Shape (N, 3).
        known_values: The values of the function at the known points. Shape (N,).
        interp_ranges: Three ``(start, stop, step)`` triples, one per axis.

    Returns:
        The interpolated values on the grid, with the shape given by :func:`grid_shape`.

    Raises:
        InvalidShapeError: If the inputs have inconsistent shapes or a range is malformed.
        EmptyIndexError: If no known points are given.
    """
    starts, steps, shape = _parse_interp_ranges(interp_ranges)
    known_points_ijk = (as_points(known_points) - starts) / steps
    interp_values = np.zeros(shape, np.float64)
    contribution_counter = np.zeros(shape, np.float64)
    griddata_inplace(known_points_ijk, known_values, interp_values, contribution_counter)
    return interp_values


def get_weights(
    known_points: np.ndarray,
    interp_ranges: Sequence[Range],
) -> scipy.sparse.csr_matrix:
    """Returns the discrete natural neighbor weights of the grid cells, given the known data
    points.

    Args:
        known_points: The points at which the function is known. Shape (N, 3).
        interp_ranges: Three ``(start, stop, step)`` triples, one per axis, as in
            :func:`griddata`.

    Returns:
        The interpolation weights as a sparse matrix of shape (M, N), where M is the number of
        grid cells, in C order.
    """
    interpolator = Interpolator(known_points, interp_ranges)
    return interpolator.get_weights()


def grid_shape(interp_ranges: Sequence[Range]) -> Tuple[int, int, int]:
    """The shape of the grid described by ``interp_ranges``."""
    return _parse_interp_ranges(interp_ranges)[2]


def grid_coordinates(interp_ranges: Sequence[Range]) -> np.ndarray:
    """The coordinates of the grid described by ``interp_ranges``. Shape (3, ni, nj, nk)."""
    _parse_interp_ranges(interp_ranges)
    return np.mgrid[tuple(slice(start, stop, step) for start, stop, step in interp_ranges)]


def _parse_interp_ranges(
    interp_ranges: Sequence[Range]
) -> Tuple[np.ndarray, np.ndarray, Tuple[int, int, int]]:
    if len(interp_ranges) != NUM_DIMENSIONS:
        raise InvalidShapeError(
            f'Expected {NUM_DIMENSIONS} interpolation ranges, got {len(interp_ranges)}')

    starts = []
    steps = []
    shape = []
    for interp_range in interp_ranges:
        if len(interp_range) != 3:
            raise InvalidShapeError(
                f'Each interpolation range must be (start, stop, step), got {interp_range}')
        start, stop, step = interp_range
        if np.iscomplexobj(step):
            # Same as numpy.mgrid: the magnitude is the number of points, stop is included.
            num_points = int(abs(step))
            step = (stop - start) / (num_points - 1) if num_points > 1 else 1.0
            if step == 0:
                step = 1.0
        else:
            if step == 0:
                raise InvalidShapeError(f'Interpolation range has a zero step: {interp_range}')
            num_points = max(int(np.ceil((stop - start) / step)), 0)
        starts.append(start)
        steps.append(step)
        shape.append(num_points)

    return np.array(starts, np.float64), np.array(steps, np.float64), tuple(shape)


class Interpolator:
    """
    Discrete natural neighbor interpolator from fixed known points onto a fixed 3D grid.

    If several functions are known at the same points, e.g. the channels of a vector field, it is
    more efficient to create an Interpolator object and use it for all of them, rather than
    calling :func:`griddata` for each. The nearest neighbor search and scattering are then done
    only once, and each interpolation is a sparse matrix product.

    Args:
        known_points: The points at which the function is known. Shape (N, 3).
        interp_ranges: Three ``(start, stop, step)`` triples, one per axis, as in
            :func:`griddata`.
    """

    def __init__(self, known_points: np.ndarray, interp_ranges: Sequence[Range]):
        starts, steps, self.grid_shape = _parse_interp_ranges(interp_ranges)
        known_points = as_points(known_points)
        if len(known_points) == 0:
            raise EmptyIndexError('At least one known point is required for interpolation')
        self.num_known_points = len(known_points)
        tree = KDTree((known_points - starts) / steps)
        self._weights = scatter_weights(tree, self.grid_shape)
        logger.debug(
            'Computed weights for %d cells with %d non-zeros',
            self._weights.shape[0], self._weights.nnz)

    def get_weights(self) -> scipy.sparse.csr_matrix:
        """The interpolation weights as a sparse matrix of shape (M, N), where M is the number of
        grid cells, in C order."""
        return self._weights

    def interpolate(self, values: np.ndarray) -> np.ndarray:
        """Interpolate function values onto the grid.

        Args:
            values: The values of the function at the known points, which were originally passed
                in the constructor. Shape (N, D) or (N,).

        Returns:
            The interpolated values on the grid. Shape (ni, nj, nk, D) or (ni, nj, nk),
            depending on the shape of the ``values`` array.
        """
        values = np.ascontiguousarray(values, np.float64)
        if values.ndim not in (1, 2) or len(values) != self.num_known_points:
            raise InvalidShapeError(
                f'Expected values of shape ({self.num_known_points},) or '
                f'({self.num_known_points}, D), got {values.shape}')

        if len(values.shape) == 1:
            interpolated = self._weights @ values[:, np.newaxis]
            return np.asarray(interpolated).reshape(self.grid_shape)
        else:
            interpolated = self._weights @ values
            return np.asarray(interpolated).reshape(self.grid_shape + (values.shape[1],))
