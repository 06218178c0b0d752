"""
GridSplit - ComfyUI Custom Node for exact rows x columns splitting

Splits an image into a fixed grid. Tiles on the last row and column absorb
the remainder pixels, so the tiles always cover the image exactly and can
differ in size by a few pixels; they are therefore returned as a list.
"""

import logging
from typing import Any, Dict, List, Tuple

import numpy as np

from .grid_geometry import (
    MAX_GRID,
    MAX_TILES,
    MIN_GRID,
    GridConfig,
    TileRect,
    compute_tiles,
)
from .tile_ports import compute_ports
from .tile_renderer import array_to_pil, pil_to_array, render_grid_preview, to_numpy, to_tensor

logger = logging.getLogger(__name__)


class GridSplit:
    """
    ComfyUI node that splits an image into rows x columns tiles.

    Outputs:
    - tiles: one image per tile, row-major (tile-0 is top-left)
    - preview: the source with tile boundaries drawn over it
    - meta: human readable summary, including the tile labels
    """

    CATEGORY = "image/grid"
    RETURN_TYPES = ("IMAGE", "IMAGE", "STRING")
    RETURN_NAMES = ("tiles", "preview", "meta")
    OUTPUT_IS_LIST = (True, False, False)
    FUNCTION = "split"

    @classmethod
    def INPUT_TYPES(cls) -> Dict[str, Any]:
        return {
            "required": {
                "image": ("IMAGE",),
                "rows": ("INT", {"default": 2, "min": MIN_GRID, "max": MAX_GRID, "step": 1}),
                "columns": ("INT", {"default": 2, "min": MIN_GRID, "max": MAX_GRID, "step": 1}),
                "preview_line_width": ("INT", {"default": 2, "min": 1, "max": 10, "step": 1}),
            }
        }

    def split(
        self,
        image,
        rows: int,
        columns: int,
        preview_line_width: int = 2,
    ) -> Tuple:
        """
        Split the first image of the batch into a grid.

        Args:
            image: Input image (torch tensor or numpy array) in (B, H, W, C) format from ComfyUI
            rows: Number of rows
            columns: Number of columns
            preview_line_width: Width of the boundary lines in the preview

        Returns:
            Tuple of (list of tile images, preview image, metadata string)
        """
        config = GridConfig(rows=rows, columns=columns)

        img_np = to_numpy(image)

        if len(img_np.shape) == 4:
            img_array = img_np[0]
        else:
            img_array = img_np

        if not np.issubdtype(img_array.dtype, np.floating):
            img_array = img_array.astype(np.float32) / 255.0

        height, width = img_array.shape[:2]
        rects = compute_tiles(width, height, config.rows, config.columns)

        crops = self._crop_tiles(img_array, rects)
        tiles = [to_tensor(np.expand_dims(crop, axis=0).astype(np.float32)) for crop in crops]

        preview = render_grid_preview(array_to_pil(img_array), rects, line_width=preview_line_width)
        preview_batch = np.expand_dims(pil_to_array(preview)[:, :, :3], axis=0)
        preview_output = to_tensor(np.ascontiguousarray(preview_batch))

        meta = self._build_meta(width, height, config, rects)
        if config.exceeds_max:
            logger.warning("GridSplit produced %d tiles (max %d)", config.tile_count, MAX_TILES)

        return (tiles, preview_output, meta)

    def _crop_tiles(self, img_array: np.ndarray, rects: List[TileRect]) -> List[np.ndarray]:
        """Copy each tile rectangle out of an (H, W, C) array."""
        crops = []
        for rect in rects:
            x0, y0, x1, y1 = rect.box
            crops.append(img_array[y0:y1, x0:x1].copy())
        return crops

    def _build_meta(self, width: int, height: int, config: GridConfig, rects: List[TileRect]) -> str:
        ports = compute_ports(config.rows, config.columns)
        base = rects[0]
        last = rects[-1]

        meta = (
            f"Image size: {width}x{height}\n"
            f"Grid: {config.rows} rows x {config.columns} cols\n"
            f"Tiles: {config.tile_count}\n"
            f"Tile size: {base.width}x{base.height} (last tile {last.width}x{last.height})\n"
            f"Remainder pixels: {last.width - base.width}px horizontal, "
            f"{last.height - base.height}px vertical\n"
            f"Handles: {', '.join(f'{p.handle_id}={p.label}' for p in ports)}"
        )
        if config.exceeds_max:
            meta += f"\nWarning: more than {MAX_TILES} tiles"
        return meta


NODE_CLASS_MAPPINGS = {
    "GS_GridSplit": GridSplit
}

NODE_DISPLAY_NAME_MAPPINGS = {
    "GS_GridSplit": "🔲 GS Grid Split"
}
