"""
TilePortTopology - output handle layout for a grid split node

One output port per tile, in the same row-major order as the tile
rectangles. Ports are recomputed from (rows, columns) on every call and
never stored, so they cannot drift from the tile indices.
"""

from dataclasses import dataclass
from typing import List, Tuple

from .grid_geometry import validate_grid

# Above this many tiles, labels fall back to the compact "t{index}" form.
LABEL_DETAIL_LIMIT = 16
PORT_MARGIN = 0.15
PORT_SPAN = 0.70


@dataclass(frozen=True)
class PortDescriptor:
    handle_id: str
    label: str
    position_fraction: float
    row: int
    col: int
    index: int


def handle_id(index: int) -> str:
    return f"tile-{index}"


def compute_ports(rows: int, columns: int) -> List[PortDescriptor]:
    """
    Derive one PortDescriptor per tile.

    Ports are spread linearly over [PORT_MARGIN, PORT_MARGIN + PORT_SPAN] of the
    node edge; a single port sits in the middle.
    """
    validate_grid(rows, columns)

    tile_count = rows * columns

    ports = []
    for r in range(rows):
        for c in range(columns):
            index = r * columns + c
            if tile_count <= LABEL_DETAIL_LIMIT:
                label = f"r{r + 1}c{c + 1}"
            else:
                label = f"t{index}"

            if tile_count == 1:
                position = 0.5
            else:
                position = PORT_MARGIN + (index / (tile_count - 1)) * PORT_SPAN

            ports.append(PortDescriptor(
                handle_id=handle_id(index),
                label=label,
                position_fraction=position,
                row=r,
                col=c,
                index=index,
            ))
    return ports


def grid_lines(rows: int, columns: int) -> Tuple[List[float], List[float]]:
    """
    Guide line fractions for overlaying the grid on a preview.

    Returns:
        Tuple of (vertical line x fractions, horizontal line y fractions)
    """
    validate_grid(rows, columns)
    vertical = [(i + 1) / columns for i in range(columns - 1)]
    horizontal = [(i + 1) / rows for i in range(rows - 1)]
    return vertical, horizontal
