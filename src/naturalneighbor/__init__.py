"""Discrete natural neighbor interpolation in 3D.

Interpolates scattered known values onto a regular grid with the scatter-based discrete Sibson
method of Park et al. (2006), using a kd-tree for nearest neighbor search.
"""

from naturalneighbor.errors import EmptyIndexError, InvalidShapeError, NaturalNeighborError
from naturalneighbor.kdtree import KDTree, NearestResult
from naturalneighbor.naturalneighbor import (
    Interpolator, get_weights, grid_coordinates, grid_shape, griddata)
from naturalneighbor.scatter import interpolate

try:
    from ._version import version as __version__
except ImportError:
    __version__ = '0.0.0'
