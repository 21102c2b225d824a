"""Scatter-based discrete Sibson interpolation on a regular grid in index space.

Every grid cell ``(i, j, k)`` is treated as a point with those integer coordinates. Its nearest
known point, at squared distance ``d2``, defines a sphere around the cell. The nearest point's
value is scattered into every cell inside that sphere, and each cell finally receives the mean
of all values scattered into it. This is the discrete approximation of natural neighbor
interpolation of Park et al. (2006), which avoids building an explicit Voronoi diagram.
"""

import logging
from typing import Iterator, Sequence, Tuple

import numpy as np
import scipy.sparse

from naturalneighbor.errors import EmptyIndexError, InvalidShapeError
from naturalneighbor.kdtree import NUM_DIMENSIONS, KDTree, NearestResult, as_points

logger = logging.getLogger(__name__)


# Upper bound on the number of (origin, offset) pairs examined at once.
_MAX_PAIRS_PER_CHUNK = 1 << 20


def roi_radius(distance_sq):
    """Integer radius, in grid steps, of the box enclosing a sphere of squared radius
    ``distance_sq``. Accepts scalars or arrays."""
    return np.ceil(np.sqrt(distance_sq)).astype(np.int64)


def roi_bounds(index, radius, extent: int):
    """Inclusive bounds of ``[index - radius, index + radius]`` clamped to ``[0, extent - 1]``.
    Accepts scalars or arrays for ``index`` and ``radius``."""
    return np.maximum(index - radius, 0), np.minimum(index + radius, extent - 1)


def _sphere_offsets(radius: int, grid_shape: Sequence[int]) -> np.ndarray:
    """Integer offsets within ``radius`` of the origin that can stay inside a grid of
    ``grid_shape``. Shape (K, 3)."""
    reach = [min(radius, extent - 1) for extent in grid_shape]
    offsets = np.stack(np.meshgrid(
        *[np.arange(-r, r + 1) for r in reach], indexing='ij'), axis=-1).reshape(-1, 3)
    return offsets[np.sum(offsets * offsets, axis=1) <= radius * radius]


def _iter_footprints(
    tree: KDTree, grid_shape: Sequence[int]
) -> Iterator[Tuple[np.ndarray, np.ndarray, NearestResult]]:
    """Yields chunks of (origin, target) pairs of flat cell indices, where target lies inside the
    sphere around origin whose radius is the distance from origin to its nearest known point.
    Also yields the nearest known points of all cells, indexed by flat cell index.

    Origin cells are grouped by their integer region of interest radius so that each group
    shares one stencil of candidate offsets.
    """
    num_cells = int(np.prod(grid_shape))
    if num_cells == 0:
        return
    cells = np.stack(np.unravel_index(np.arange(num_cells), grid_shape), axis=-1)
    nearest = tree.nearest_many(cells)
    radii = roi_radius(nearest.distance_sq)
    extents = np.asarray(grid_shape)

    for radius in np.unique(radii):
        offsets = _sphere_offsets(int(radius), grid_shape)
        offsets_sq = np.sum(offsets * offsets, axis=1)
        group = np.nonzero(radii == radius)[0]
        chunk_size = max(1, _MAX_PAIRS_PER_CHUNK // len(offsets))
        for start in range(0, len(group), chunk_size):
            origins = group[start:start + chunk_size]
            targets = cells[origins][:, np.newaxis, :] + offsets[np.newaxis, :, :]
            lo, hi = roi_bounds(cells[origins], radius, extents)
            # Integer squared grid distances compared against the floating point d2.
            inside = offsets_sq[np.newaxis, :] <= nearest.distance_sq[origins, np.newaxis]
            inside &= np.all(
                (targets >= lo[:, np.newaxis, :]) & (targets <= hi[:, np.newaxis, :]), axis=-1)
            target_ids = np.ravel_multi_index(tuple(targets[inside].T), grid_shape)
            origin_ids = np.broadcast_to(origins[:, np.newaxis], inside.shape)[inside]
            yield origin_ids, target_ids, nearest


def scatter(tree: KDTree, interp_values: np.ndarray, contribution_counter: np.ndarray) -> None:
    """Accumulates the scattered values and contribution counts in place, without normalizing.

    Args:
        tree: Index of the known points, in grid index coordinates.
        interp_values: Accumulator grid of shape (ni, nj, nk), modified in place.
        contribution_counter: Counter grid of the same shape, modified in place.
    """
    num_cells = interp_values.size
    sums = np.zeros(num_cells)
    counts = np.zeros(num_cells)
    for origin_ids, target_ids, nearest in _iter_footprints(tree, interp_values.shape):
        sums += np.bincount(
            target_ids, weights=nearest.value[origin_ids], minlength=num_cells)
        counts += np.bincount(target_ids, minlength=num_cells)
    interp_values += sums.reshape(interp_values.shape)
    contribution_counter += counts.reshape(contribution_counter.shape)


def normalize(interp_values: np.ndarray, contribution_counter: np.ndarray) -> None:
    """Divides every cell with a non-zero counter by its counter, in place.

    Cells nobody contributed to keep their accumulated value. This must be applied exactly once to
    the output of :func:`scatter`.
    """
    covered = contribution_counter != 0
    interp_values[covered] /= contribution_counter[covered]


def _validate_known(known_points, known_values) -> Tuple[np.ndarray, np.ndarray]:
    known_points = as_points(known_points)
    known_values = np.ascontiguousarray(known_values, np.float64)
    if known_values.ndim != 1:
        raise InvalidShapeError(f'known_values must be 1D, got shape {known_values.shape}')
    if len(known_values) != len(known_points):
        raise InvalidShapeError(
            f'Got {len(known_points)} known points but {len(known_values)} known values')
    if len(known_points) == 0:
        raise EmptyIndexError('At least one known point is required for interpolation')
    return known_points, known_values


def validate_grid_shape(grid_shape: Sequence[int]) -> Tuple[int, int, int]:
    """Checks that ``grid_shape`` holds three non-negative integer extents and returns them."""
    if len(grid_shape) != NUM_DIMENSIONS:
        raise InvalidShapeError(
            f'Grid shape must have {NUM_DIMENSIONS} extents, got {len(grid_shape)}')
    extents = []
    for extent in grid_shape:
        if int(extent) != extent or extent < 0:
            raise InvalidShapeError(
                f'Grid extents must be non-negative integers, got {tuple(grid_shape)}')
        extents.append(int(extent))
    return tuple(extents)


def griddata_inplace(
    known_points: np.ndarray,
    known_values: np.ndarray,
    interp_values: np.ndarray,
    contribution_counter: np.ndarray,
) -> None:
    """Interpolates known values onto a grid, writing into caller-allocated arrays.

    The known points are given in grid index coordinates, i.e. the point ``(i, j, k)``
    coincides with the cell ``interp_values[i, j, k]``.

    Args:
        known_points: The points at which the function is known. Shape (N, 3).
        known_values: The values of the function at the known points. Shape (N,).
        interp_values: Zero-initialized float grid of shape (ni, nj, nk). Holds the interpolated
            values on return.
        contribution_counter: Zero-initialized grid of the same shape. Holds the number of
            contributions each cell received on return.

    Raises:
        InvalidShapeError: If the inputs have inconsistent shapes.
        EmptyIndexError: If no known points are given.
    """
    known_points, known_values = _validate_known(known_points, known_values)
    if not isinstance(interp_values, np.ndarray) or not isinstance(
            contribution_counter, np.ndarray):
        raise InvalidShapeError('Output grids must be numpy arrays')
    validate_grid_shape(interp_values.shape)
    if interp_values.shape != contribution_counter.shape:
        raise InvalidShapeError(
            f'Output grids have different shapes: {interp_values.shape} '
            f'and {contribution_counter.shape}')

    logger.debug(
        'Interpolating %d known points onto a grid of shape %s',
        len(known_points), interp_values.shape)
    tree = KDTree(known_points, known_values)
    scatter(tree, interp_values, contribution_counter)
    normalize(interp_values, contribution_counter)


def interpolate(
    known_points: np.ndarray,
    known_values: np.ndarray,
    grid_shape: Sequence[int],
) -> Tuple[np.ndarray, np.ndarray]:
    """Interpolates known values onto a new grid given in index coordinates.

    Args:
        known_points: The points at which the function is known, in grid index coordinates.
            Shape (N, 3).
        known_values: The values of the function at the known points. Shape (N,).
        grid_shape: The extents (ni, nj, nk) of the grid. Zero extents give empty grids.

    Returns:
        The interpolated values and the contribution count of every cell, both float64 arrays of
        shape ``grid_shape``.
    """
    grid_shape = validate_grid_shape(grid_shape)
    interp_values = np.zeros(grid_shape, np.float64)
    contribution_counter = np.zeros(grid_shape, np.float64)
    griddata_inplace(known_points, known_values, interp_values, contribution_counter)
    return interp_values, contribution_counter


def scatter_weights(tree: KDTree, grid_shape: Sequence[int]) -> scipy.sparse.csr_matrix:
    """Computes the scatter interpolation as a linear map from known values to grid cells.

    Row ``c`` of the result (cells in C order) holds, for each known point, the fraction of the
    contributions to cell ``c`` that came from that point, so that ``weights @ values`` equals
    the interpolated grid, flattened. Rows of cells without contributions are empty.

    Args:
        tree: Index of the known points, in grid index coordinates.
        grid_shape: The extents (ni, nj, nk) of the grid.

    Returns:
        Sparse matrix of shape (ni * nj * nk, len(tree)).
    """
    grid_shape = validate_grid_shape(grid_shape)
    num_cells = int(np.prod(grid_shape))
    rows = []
    cols = []
    for origin_ids, target_ids, nearest in _iter_footprints(tree, grid_shape):
        rows.append(target_ids)
        cols.append(nearest.index[origin_ids])

    rows = np.concatenate(rows) if rows else np.empty(0, np.intp)
    cols = np.concatenate(cols) if cols else np.empty(0, np.intp)
    counts = np.ones(len(rows), np.float64)
    # Duplicate (cell, point) pairs are summed by the conversion.
    weights = scipy.sparse.coo_matrix(
        (counts, (rows, cols)), shape=(num_cells, len(tree))).tocsr()
    totals = np.asarray(weights.sum(axis=1)).ravel()
    weights.data /= np.repeat(totals, np.diff(weights.indptr))
    return weights
