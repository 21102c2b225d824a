import logging
import math
from typing import NamedTuple, Optional, Sequence

import numpy as np

from naturalneighbor.errors import EmptyIndexError, InvalidShapeError

logger = logging.getLogger(__name__)

NUM_DIMENSIONS = 3


class NearestResult(NamedTuple):
    """Outcome of a nearest-neighbor query."""

    distance_sq: float
    value: float
    index: int


def distance_sq(a: Sequence[float], b: Sequence[float]) -> float:
    """Squared Euclidean distance between two 3D points."""
    dx = a[0] - b[0]
    dy = a[1] - b[1]
    dz = a[2] - b[2]
    return dx * dx + dy * dy + dz * dz


def as_points(points) -> np.ndarray:
    """Converts ``points`` to a contiguous float64 array of shape (N, 3)."""
    points = np.ascontiguousarray(points, np.float64)
    if points.shape in ((0,), (0, NUM_DIMENSIONS)):
        return np.empty((0, NUM_DIMENSIONS), np.float64)
    if points.ndim != 2 or points.shape[1] != NUM_DIMENSIONS:
        raise InvalidShapeError(
            f'Points must have shape (N, {NUM_DIMENSIONS}), got {points.shape}')
    if not np.all(np.isfinite(points)):
        raise InvalidShapeError('Points must have finite coordinates')
    return points


class KDTree:
    """
    Balanced kd-tree over a fixed set of 3D points, answering exact nearest-neighbor queries.

    The tree is built once and is never mutated afterwards. Each node is a pivot point that
    splits its subtree along the axis ``depth % 3``; the pivot is the median of the node's points
    along that axis. Points in the left subtree are less than or equal to the pivot on the split
    axis, points in the right subtree are greater than or equal to it.

    Nodes live in an arena of flat arrays addressed by node index, with ``-1`` marking a missing
    child. The tree refers to points by their index in the arrays passed in, which are copied on
    construction, so the caller is free to modify its own arrays afterwards.

    Args:
        points: The known points. Shape (N, 3). N may be zero, in which case the tree is empty and
            every query raises :class:`EmptyIndexError`.
        values: The scalar value associated with each point. Shape (N,). Defaults to zeros.
    """

    def __init__(self, points: np.ndarray, values: Optional[np.ndarray] = None):
        self._points = as_points(points).copy()
        num_points = len(self._points)
        if values is None:
            self._values = np.zeros(num_points, np.float64)
        else:
            self._values = np.array(values, np.float64).reshape(-1)
            if np.ndim(values) > 1 or len(self._values) != num_points:
                raise InvalidShapeError(
                    f'Expected {num_points} values of shape ({num_points},), '
                    f'got shape {np.shape(values)}')
        self._points.setflags(write=False)
        self._values.setflags(write=False)

        self._pivot = np.full(num_points, -1, np.intp)
        self._axis = np.zeros(num_points, np.intp)
        self._left = np.full(num_points, -1, np.intp)
        self._right = np.full(num_points, -1, np.intp)
        self._num_nodes = 0
        self._depth = 0
        self._root = self._build(np.arange(num_points), 0)

        # List copies of the arrays above, read node by node during queries.
        self._coord_list = self._points.tolist()
        self._value_list = self._values.tolist()
        self._pivot_list = self._pivot.tolist()
        self._axis_list = self._axis.tolist()
        self._left_list = self._left.tolist()
        self._right_list = self._right.tolist()
        logger.debug('Built kd-tree with %d points and depth %d', num_points, self._depth)

    def _build(self, indices: np.ndarray, depth: int) -> int:
        if len(indices) == 0:
            return -1

        self._depth = max(self._depth, depth + 1)
        axis = depth % NUM_DIMENSIONS
        mid = len(indices) // 2
        indices = indices[np.argpartition(self._points[indices, axis], mid)]

        node = self._num_nodes
        self._num_nodes += 1
        self._pivot[node] = indices[mid]
        self._axis[node] = axis
        self._left[node] = self._build(indices[:mid], depth + 1)
        self._right[node] = self._build(indices[mid + 1:], depth + 1)
        return node

    def __len__(self) -> int:
        return len(self._points)

    @property
    def points(self) -> np.ndarray:
        """The indexed points as a read-only array of shape (N, 3)."""
        return self._points

    @property
    def values(self) -> np.ndarray:
        """The values of the indexed points as a read-only array of shape (N,)."""
        return self._values

    @property
    def depth(self) -> int:
        """Number of levels in the tree, zero for an empty tree."""
        return self._depth

    def nearest(self, query: Sequence[float]) -> NearestResult:
        """Finds the indexed point closest to ``query``.

        The search is exact. Among several points at the same minimal distance, the one reached
        first while traversing the tree wins, which is deterministic for a given point set but
        depends on how the tree happened to be balanced.

        Args:
            query: The query point, a sequence of 3 coordinates.

        Returns:
            The squared distance to the nearest point, its value and its index.

        Raises:
            EmptyIndexError: If the tree holds no points.
            InvalidShapeError: If the query is not 3 finite coordinates.
        """
        if self._root == -1:
            raise EmptyIndexError('Cannot query the nearest neighbor of an empty index')
        if len(query) != NUM_DIMENSIONS:
            raise InvalidShapeError(
                f'Query point must have {NUM_DIMENSIONS} coordinates, got {len(query)}')

        query = (float(query[0]), float(query[1]), float(query[2]))
        if not all(math.isfinite(c) for c in query):
            raise InvalidShapeError(f'Query point must have finite coordinates, got {query}')
        coords = self._coord_list
        pivots = self._pivot_list
        axes = self._axis_list
        lefts = self._left_list
        rights = self._right_list

        best_index = -1
        best_distance_sq = math.inf
        # Each entry is a subtree still to visit and the squared distance from the query to the
        # splitting plane that separates it from the query's side.
        pending = [(self._root, 0.0)]
        while pending:
            node, plane_distance_sq = pending.pop()
            if plane_distance_sq > best_distance_sq:
                continue

            while node != -1:
                pivot = pivots[node]
                point = coords[pivot]
                d2 = distance_sq(query, point)
                if d2 < best_distance_sq:
                    best_index = pivot
                    best_distance_sq = d2

                axis = axes[node]
                diff = query[axis] - point[axis]
                if diff < 0:
                    near, far = lefts[node], rights[node]
                else:
                    near, far = rights[node], lefts[node]
                if far != -1 and diff * diff <= best_distance_sq:
                    pending.append((far, diff * diff))
                node = near

        return NearestResult(best_distance_sq, self._value_list[best_index], best_index)

    def nearest_many(self, queries: np.ndarray) -> NearestResult:
        """Finds the indexed point closest to each of many queries at once.

        All queries walk the tree together, one level per step, with numpy doing the per-node
        work. Results equal those of :meth:`nearest` except among points at exactly the same
        distance, where either may win.

        Args:
            queries: The query points. Shape (M, 3).

        Returns:
            Arrays of shape (M,) with the squared distances, values and indices of the nearest
            points.

        Raises:
            EmptyIndexError: If the tree holds no points.
            InvalidShapeError: If the queries are not finite points of shape (M, 3).
        """
        if self._root == -1:
            raise EmptyIndexError('Cannot query the nearest neighbor of an empty index')
        queries = as_points(queries)
        num_queries = len(queries)
        best_distance_sq = np.full(num_queries, np.inf)
        best_index = np.full(num_queries, -1, np.intp)

        # A straight descent to the leaf on each query's side gives a first bound for pruning.
        query_ids = np.arange(num_queries)
        nodes = np.full(num_queries, self._root, np.intp)
        while len(query_ids):
            diff = self._visit(queries, query_ids, nodes, best_distance_sq, best_index)
            nodes = np.where(diff < 0, self._left[nodes], self._right[nodes])
            keep = nodes != -1
            query_ids, nodes = query_ids[keep], nodes[keep]

        # Each entry holds a lower bound on the squared distance from its query to the subtree.
        query_ids = np.arange(num_queries)
        nodes = np.full(num_queries, self._root, np.intp)
        bounds = np.zeros(num_queries)
        while len(query_ids):
            keep = bounds <= best_distance_sq[query_ids]
            query_ids, nodes, bounds = query_ids[keep], nodes[keep], bounds[keep]
            if not len(query_ids):
                break
            diff = self._visit(queries, query_ids, nodes, best_distance_sq, best_index)
            on_left = diff < 0
            near = np.where(on_left, self._left[nodes], self._right[nodes])
            far = np.where(on_left, self._right[nodes], self._left[nodes])
            query_ids = np.concatenate([query_ids, query_ids])
            nodes = np.concatenate([near, far])
            bounds = np.concatenate([bounds, np.maximum(bounds, diff * diff)])
            keep = nodes != -1
            query_ids, nodes, bounds = query_ids[keep], nodes[keep], bounds[keep]

        return NearestResult(best_distance_sq, self._values[best_index], best_index)

    def _visit(self, queries, query_ids, nodes, best_distance_sq, best_index):
        """Updates the best candidates with the pivots of ``nodes`` and returns the signed
        distance of each query to its node's splitting plane."""
        pivots = self._pivot[nodes]
        delta = queries[query_ids] - self._points[pivots]
        d2 = delta[:, 0] * delta[:, 0] + delta[:, 1] * delta[:, 1] + delta[:, 2] * delta[:, 2]

        # A query may reach several nodes in one step; keep its closest one.
        order = np.lexsort((d2, query_ids))
        sorted_ids = query_ids[order]
        is_first = np.ones(len(order), bool)
        is_first[1:] = sorted_ids[1:] != sorted_ids[:-1]
        candidates = order[is_first]
        candidates = candidates[d2[candidates] < best_distance_sq[query_ids[candidates]]]
        best_distance_sq[query_ids[candidates]] = d2[candidates]
        best_index[query_ids[candidates]] = pivots[candidates]

        return delta[np.arange(len(nodes)), self._axis[nodes]]
