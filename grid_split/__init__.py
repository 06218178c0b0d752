"""
Grid Split - exact rows x columns image splitting for node-based pipelines

This package splits an image into a fixed grid of tiles, gives every tile
a stable output handle, and tracks the render state of a grid split node.

Modules:
- grid_geometry: tile rectangle layout
- tile_ports: output handle ids, labels and positions
- tile_renderer: async decode, crop and PNG encode of tiles
- grid_split_state: node state, invalidation and stale-render handling
- grid_split_node: ComfyUI node wrapping the above
"""

from .errors import DecodeError, EncodeError, GridSplitError, InvalidConfig, InvalidDimensions
from .grid_geometry import GridConfig, TileRect, compute_tiles
from .grid_split_node import NODE_CLASS_MAPPINGS, NODE_DISPLAY_NAME_MAPPINGS
from .grid_split_state import GridSplitState, Status
from .tile_ports import PortDescriptor, compute_ports, grid_lines
from .tile_renderer import TileArtifact, TileMetadata, render_tiles, split_image

__all__ = [
    "NODE_CLASS_MAPPINGS",
    "NODE_DISPLAY_NAME_MAPPINGS",
    "GridConfig",
    "TileRect",
    "compute_tiles",
    "PortDescriptor",
    "compute_ports",
    "grid_lines",
    "TileArtifact",
    "TileMetadata",
    "render_tiles",
    "split_image",
    "GridSplitState",
    "Status",
    "GridSplitError",
    "InvalidConfig",
    "InvalidDimensions",
    "DecodeError",
    "EncodeError",
]
