"""
Exceptions raised by the grid split engine.
"""


class GridSplitError(Exception):
    """Base class for all grid split failures."""


class InvalidConfig(GridSplitError, ValueError):
    """Rows or columns outside the supported range."""


class InvalidDimensions(GridSplitError, ValueError):
    """The image is too small (or empty) for the requested grid."""


class DecodeError(GridSplitError):
    """The source image could not be decoded."""


class EncodeError(GridSplitError):
    """A tile could not be re-encoded."""
