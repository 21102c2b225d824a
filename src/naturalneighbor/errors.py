class NaturalNeighborError(Exception):
    """Base class for errors raised by this library."""


class EmptyIndexError(NaturalNeighborError, ValueError):
    """A nearest-neighbor query was made against an index with no points."""


class InvalidShapeError(NaturalNeighborError, ValueError):
    """Input arrays or grid extents are inconsistent with each other."""
