"""
Test script for grid geometry, tile ports and the GridSplit node

Runs under pytest, or directly without ComfyUI: python test_grid_split.py
"""

import numpy as np
import pytest

from grid_split import NODE_CLASS_MAPPINGS
from grid_split.errors import InvalidConfig, InvalidDimensions
from grid_split.grid_geometry import MAX_GRID, GridConfig, compute_tiles
from grid_split.grid_split_node import GridSplit
from grid_split.tile_ports import compute_ports, grid_lines, handle_id
from grid_split.tile_renderer import to_numpy

IMAGE_SIZES = [(10, 10), (37, 23), (100, 100), (101, 257), (640, 480)]


def create_test_grid_image(rows: int, cols: int, cell_size: int = 100, border: int = 2) -> np.ndarray:
    """
    Create a test grid image with distinct colored cells.

    Args:
        rows: Number of rows
        cols: Number of columns
        cell_size: Size of each cell in pixels
        border: Border width between cells

    Returns:
        NumPy array of the test image (H, W, C) normalized to 0-1 range
    """
    height = rows * cell_size + (rows - 1) * border
    width = cols * cell_size + (cols - 1) * border

    img = np.ones((height, width, 3), dtype=np.float32) * 0.2

    colors = [
        [1.0, 0.0, 0.0],
        [0.0, 1.0, 0.0],
        [0.0, 0.0, 1.0],
        [1.0, 1.0, 0.0],
        [1.0, 0.0, 1.0],
        [0.0, 1.0, 1.0],
    ]

    cell_idx = 0
    for r in range(rows):
        for c in range(cols):
            y0 = r * (cell_size + border)
            x0 = c * (cell_size + border)
            img[y0:y0 + cell_size, x0:x0 + cell_size] = colors[cell_idx % len(colors)]
            cell_idx += 1

    return img


def test_scenario_3x3_on_100px():
    """100x100 split 3x3: base tiles are 33px, the last row/column 34px."""
    tiles = compute_tiles(100, 100, 3, 3)

    first = tiles[0]
    last = tiles[8]
    assert (first.row, first.col, first.index) == (0, 0, 0)
    assert first.crop == {"x": 0, "y": 0, "width": 33, "height": 33}, f"Unexpected crop {first.crop}"
    assert (last.row, last.col, last.index) == (2, 2, 8)
    assert last.crop == {"x": 66, "y": 66, "width": 34, "height": 34}, f"Unexpected crop {last.crop}"


def test_single_tile_covers_image():
    tiles = compute_tiles(123, 45, 1, 1)
    assert len(tiles) == 1
    assert tiles[0].crop == {"x": 0, "y": 0, "width": 123, "height": 45}


def test_partition_law():
    """Every pixel belongs to exactly one tile for every grid shape."""
    for width, height in IMAGE_SIZES:
        for rows in range(1, MAX_GRID + 1):
            for columns in range(1, MAX_GRID + 1):
                tiles = compute_tiles(width, height, rows, columns)
                assert len(tiles) == rows * columns

                coverage = np.zeros((height, width), dtype=np.int32)
                for t in tiles:
                    assert t.width > 0 and t.height > 0
                    coverage[t.y:t.y + t.height, t.x:t.x + t.width] += 1

                assert (coverage == 1).all(), (
                    f"{width}x{height} split {rows}x{columns} does not partition the image"
                )
                assert sum(t.area for t in tiles) == width * height


def test_remainder_law():
    for width, height in IMAGE_SIZES:
        rows, columns = 7, 9
        tiles = compute_tiles(width, height, rows, columns)

        for r in range(rows):
            row_tiles = [t for t in tiles if t.row == r]
            assert sum(t.width for t in row_tiles) == width

        for c in range(columns):
            col_tiles = [t for t in tiles if t.col == c]
            assert sum(t.height for t in col_tiles) == height

        # only the last column and row absorb the slack
        assert len({t.width for t in tiles if t.col < columns - 1}) == 1
        assert len({t.height for t in tiles if t.row < rows - 1}) == 1


def test_index_law():
    tiles = compute_tiles(64, 48, 4, 6)
    assert [t.index for t in tiles] == list(range(24))
    for t in tiles:
        assert t.index == t.row * 6 + t.col
    # row-major ordering
    assert [(t.row, t.col) for t in tiles[:7]] == [(0, c) for c in range(6)] + [(1, 0)]


def test_tile_box_matches_crop():
    tile = compute_tiles(100, 100, 3, 3)[4]
    assert tile.box == (33, 33, 66, 66)


def test_invalid_dimensions():
    with pytest.raises(InvalidDimensions):
        compute_tiles(0, 10, 1, 1)
    with pytest.raises(InvalidDimensions):
        compute_tiles(10, -1, 1, 1)
    with pytest.raises(InvalidDimensions):
        compute_tiles(5, 100, 2, 6)
    with pytest.raises(InvalidDimensions):
        compute_tiles(100, 3, 4, 2)

    # exactly one pixel per tile is still valid
    tiles = compute_tiles(10, 10, 10, 10)
    assert all(t.width == 1 and t.height == 1 for t in tiles)


def test_invalid_config():
    for bad in (0, 11, -1):
        with pytest.raises(InvalidConfig):
            GridConfig(rows=bad, columns=1)
        with pytest.raises(InvalidConfig):
            GridConfig(rows=1, columns=bad)
        with pytest.raises(InvalidConfig):
            compute_tiles(100, 100, bad, 2)

    with pytest.raises(InvalidConfig):
        GridConfig(rows=2.5, columns=2)
    with pytest.raises(InvalidConfig):
        GridConfig(rows=True, columns=2)

    # InvalidConfig doubles as ValueError for callers that only catch that
    with pytest.raises(ValueError):
        GridConfig(rows=12, columns=2)


def test_grid_config_defaults_and_flags():
    config = GridConfig()
    assert (config.rows, config.columns) == (1, 1)
    assert config.tile_count == 1
    assert not config.exceeds_max

    assert not GridConfig(8, 8).exceeds_max
    big = GridConfig(8, 9)
    assert big.tile_count == 72
    assert big.exceeds_max


def test_single_port_centered():
    ports = compute_ports(1, 1)
    assert len(ports) == 1
    assert ports[0].handle_id == "tile-0"
    assert ports[0].label == "r1c1"
    assert ports[0].position_fraction == 0.5


def test_port_labels_detailed():
    ports = compute_ports(2, 5)
    expected = [f"r{r}c{c}" for r in (1, 2) for c in range(1, 6)]
    assert [p.label for p in ports] == expected
    assert [p.handle_id for p in ports] == [f"tile-{i}" for i in range(10)]


def test_port_labels_compact():
    ports = compute_ports(8, 9)
    assert len(ports) == 72
    assert [p.label for p in ports] == [f"t{i}" for i in range(72)]

    # 16 tiles still get the detailed form, 18 do not
    assert compute_ports(4, 4)[-1].label == "r4c4"
    assert compute_ports(3, 6)[-1].label == "t17"


def test_port_positions():
    ports = compute_ports(3, 4)
    positions = [p.position_fraction for p in ports]

    assert positions[0] == pytest.approx(0.15)
    assert positions[-1] == pytest.approx(0.85)
    assert all(b > a for a, b in zip(positions, positions[1:])), "Ports must be evenly ordered"
    steps = [b - a for a, b in zip(positions, positions[1:])]
    assert steps == pytest.approx([0.70 / 11] * 11)


def test_ports_are_deterministic():
    assert compute_ports(6, 7) == compute_ports(6, 7)
    assert compute_ports(3, 3) != compute_ports(3, 4)


def test_port_ids_match_tile_indices():
    tiles = compute_tiles(200, 150, 5, 3)
    ports = compute_ports(5, 3)
    assert [handle_id(t.index) for t in tiles] == [p.handle_id for p in ports]
    assert [(t.row, t.col) for t in tiles] == [(p.row, p.col) for p in ports]


def test_grid_lines():
    vertical, horizontal = grid_lines(2, 4)
    assert vertical == pytest.approx([0.25, 0.5, 0.75])
    assert horizontal == pytest.approx([0.5])
    assert grid_lines(1, 1) == ([], [])


def test_node_split():
    """GridSplit node splits a 3x3 grid image into nine tiles."""
    print("=" * 50)
    print("Test: GridSplit node (3x3 grid)")
    print("=" * 50)

    test_img = create_test_grid_image(3, 3, cell_size=100, border=4)
    height, width = test_img.shape[:2]
    print(f"Created test image: {test_img.shape}")

    node = GridSplit()
    tiles, preview, meta = node.split(
        image=test_img[np.newaxis],
        rows=3,
        columns=3,
        preview_line_width=2,
    )
    print(f"\nMetadata:\n{meta}")

    assert len(tiles) == 9, f"Expected 9 tiles, got {len(tiles)}"

    rects = compute_tiles(width, height, 3, 3)
    for tile, rect in zip(tiles, rects):
        tile_np = to_numpy(tile)
        assert tile_np.shape == (1, rect.height, rect.width, 3)
        assert np.allclose(tile_np[0], test_img[rect.y:rect.y + rect.height, rect.x:rect.x + rect.width])

    assert tuple(to_numpy(preview).shape) == (1, height, width, 3)
    assert "Grid: 3 rows x 3 cols" in meta
    assert "tile-8=r3c3" in meta


def test_node_remainder_and_warning():
    test_img = np.random.rand(1, 101, 257, 3).astype(np.float32)

    node = GridSplit()
    tiles, _, meta = node.split(image=test_img, rows=8, columns=9)

    assert len(tiles) == 72
    total = sum(to_numpy(t).shape[1] * to_numpy(t).shape[2] for t in tiles)
    assert total == 101 * 257
    assert "Remainder pixels: 5px horizontal, 5px vertical" in meta
    assert "Warning: more than 64 tiles" in meta


def test_node_normalises_integer_input():
    """uint8 input gives 0-1 float tiles, matching the preview range."""
    test_img = (create_test_grid_image(2, 2, cell_size=20, border=2) * 255).astype(np.uint8)

    node = GridSplit()
    tiles, preview, _ = node.split(image=test_img[np.newaxis], rows=2, columns=2)

    first = to_numpy(tiles[0])
    assert first.dtype == np.float32
    assert first.max() <= 1.0, f"Tile values not normalised, max {first.max()}"
    assert np.allclose(first[0], test_img[:21, :21] / 255.0)
    assert to_numpy(preview).max() <= 1.0


def test_node_rejects_bad_input():
    node = GridSplit()
    with pytest.raises(ValueError):
        node.split(image=np.zeros((1, 50, 50, 3), dtype=np.float32), rows=0, columns=2)
    with pytest.raises(ValueError):
        node.split(image=np.zeros((1, 5, 50, 3), dtype=np.float32), rows=6, columns=2)


def test_node_registration():
    assert NODE_CLASS_MAPPINGS["GS_GridSplit"] is GridSplit
    inputs = GridSplit.INPUT_TYPES()["required"]
    assert inputs["rows"][1]["min"] == 1
    assert inputs["rows"][1]["max"] == 10
    assert inputs["columns"][1]["max"] == 10


def main():
    """Run all tests."""
    print("\n" + "#" * 60)
    print("# GridSplit Test Suite")
    print("#" * 60)

    tests = [
        test_scenario_3x3_on_100px,
        test_single_tile_covers_image,
        test_partition_law,
        test_remainder_law,
        test_index_law,
        test_tile_box_matches_crop,
        test_invalid_dimensions,
        test_invalid_config,
        test_grid_config_defaults_and_flags,
        test_single_port_centered,
        test_port_labels_detailed,
        test_port_labels_compact,
        test_port_positions,
        test_ports_are_deterministic,
        test_port_ids_match_tile_indices,
        test_grid_lines,
        test_node_split,
        test_node_remainder_and_warning,
        test_node_normalises_integer_input,
        test_node_rejects_bad_input,
        test_node_registration,
    ]

    passed = 0
    failed = 0

    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"\nFAILED: {test.__name__}")
            print(f"Error: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print("\n" + "#" * 60)
    print(f"# Results: {passed} passed, {failed} failed")
    print("#" * 60)

    return failed == 0


if __name__ == "__main__":
    success = main()
    exit(0 if success else 1)
