"""
GridGeometry - rectangle layout for splitting an image into rows x columns

Tiles are laid out row-major. Every tile is floor(W / columns) by
floor(H / rows) pixels, except the last column and last row, which absorb
the remainder so the tiles cover the image exactly.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

from .errors import InvalidConfig, InvalidDimensions

logger = logging.getLogger(__name__)

MIN_GRID = 1
MAX_GRID = 10
MAX_TILES = 64
DEFAULT_ROWS = 1
DEFAULT_COLUMNS = 1


def validate_grid(rows: int, columns: int) -> None:
    """Raise InvalidConfig unless both dimensions are integers in [MIN_GRID, MAX_GRID]."""
    for name, value in (("rows", rows), ("columns", columns)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidConfig(f"{name} must be an integer, got {value!r}")
        if not MIN_GRID <= value <= MAX_GRID:
            raise InvalidConfig(
                f"{name} must be between {MIN_GRID} and {MAX_GRID}, got {value}"
            )


@dataclass(frozen=True)
class GridConfig:
    """Requested grid shape. Construction fails for out-of-range values."""

    rows: int = DEFAULT_ROWS
    columns: int = DEFAULT_COLUMNS

    def __post_init__(self):
        validate_grid(self.rows, self.columns)

    @property
    def tile_count(self) -> int:
        return self.rows * self.columns

    @property
    def exceeds_max(self) -> bool:
        """Advisory flag; large grids are still rendered."""
        return self.tile_count > MAX_TILES


@dataclass(frozen=True)
class TileRect:
    """One tile of the grid, in source pixel coordinates."""

    row: int
    col: int
    index: int
    x: int
    y: int
    width: int
    height: int

    @property
    def crop(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @property
    def box(self) -> Tuple[int, int, int, int]:
        """(left, upper, right, lower) as expected by PIL.Image.crop."""
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    @property
    def area(self) -> int:
        return self.width * self.height


def compute_tiles(width: int, height: int, rows: int, columns: int) -> List[TileRect]:
    """
    Compute the tile rectangles for an image.

    Args:
        width: Source image width in pixels
        height: Source image height in pixels
        rows: Number of grid rows
        columns: Number of grid columns

    Returns:
        rows * columns TileRects in row-major order (index = row * columns + col)

    Raises:
        InvalidConfig: rows or columns outside the supported range
        InvalidDimensions: empty image, or more columns/rows than pixels
    """
    validate_grid(rows, columns)

    if width <= 0 or height <= 0:
        raise InvalidDimensions(f"Image size must be positive, got {width}x{height}")
    if columns > width or rows > height:
        raise InvalidDimensions(
            f"Image ({width}x{height}) is too small for a {rows}x{columns} grid: "
            f"tiles would be empty."
        )

    tile_width = width // columns
    tile_height = height // rows
    remainder_x = width - tile_width * columns
    remainder_y = height - tile_height * rows

    tiles = []
    for r in range(rows):
        for c in range(columns):
            tiles.append(TileRect(
                row=r,
                col=c,
                index=r * columns + c,
                x=c * tile_width,
                y=r * tile_height,
                width=tile_width + (remainder_x if c == columns - 1 else 0),
                height=tile_height + (remainder_y if r == rows - 1 else 0),
            ))

    logger.debug(
        "Laid out %dx%d grid on %dx%d image (base tile %dx%d, remainder %d/%d)",
        rows, columns, width, height, tile_width, tile_height, remainder_x, remainder_y,
    )
    return tiles
