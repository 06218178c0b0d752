"""
TileRenderer - decode a source image and re-encode each grid tile

Accepts the image references a graph node is likely to receive (encoded
bytes, data URLs, file paths, PIL images, numpy arrays and ComfyUI tensors),
crops every TileRect into its own buffer and encodes it as a PNG data URL.
Decoding and encoding run in the default executor so the owning event loop
stays responsive.
"""

import asyncio
import base64
import binascii
import io
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
from PIL import Image, ImageDraw, UnidentifiedImageError

from .errors import DecodeError, EncodeError, InvalidDimensions
from .grid_geometry import TileRect, compute_tiles
from .tile_ports import handle_id

try:
    import torch
    HAS_TORCH = True
except ImportError:
    HAS_TORCH = False

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = "data:"
PNG_DATA_URL_PREFIX = "data:image/png;base64,"
PNG_MODES = ("1", "L", "LA", "I;16", "P", "RGB", "RGBA")

SourceImage = Union[bytes, bytearray, str, Path, Image.Image, np.ndarray, "torch.Tensor"]


def to_numpy(image: Union[np.ndarray, "torch.Tensor"]) -> np.ndarray:
    """Convert image to numpy array, handling both numpy and torch tensors."""
    if HAS_TORCH and isinstance(image, torch.Tensor):
        return image.cpu().numpy()
    return np.asarray(image)


def to_tensor(array: np.ndarray) -> Union[np.ndarray, "torch.Tensor"]:
    """Convert numpy array to torch tensor if torch is available."""
    if HAS_TORCH:
        return torch.from_numpy(array)
    return array


def array_to_pil(array: np.ndarray) -> Image.Image:
    """
    Convert a ComfyUI-style image array to a PIL image.

    Args:
        array: (H, W), (H, W, C) or (B, H, W, C) array; float data is
            expected in the 0-1 range. Only the first batch entry is used.

    Returns:
        PIL image in L, RGB or RGBA mode
    """
    if array.ndim == 4:
        array = array[0]
    if array.ndim == 3 and array.shape[2] == 1:
        array = array[:, :, 0]
    if array.ndim not in (2, 3) or (array.ndim == 3 and array.shape[2] not in (3, 4)):
        raise DecodeError(f"Unsupported image array shape {array.shape}")
    if array.size == 0:
        raise DecodeError("Image array is empty")

    if array.dtype != np.uint8:
        if np.issubdtype(array.dtype, np.floating) and array.max() <= 1.0:
            array = np.clip(array * 255.0 + 0.5, 0, 255)
        else:
            array = np.clip(array, 0, 255)
        array = array.astype(np.uint8)

    return Image.fromarray(np.ascontiguousarray(array))


def pil_to_array(image: Image.Image) -> np.ndarray:
    """Convert a PIL image to a float32 (H, W, C) array in the 0-1 range."""
    if image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
    return np.asarray(image).astype(np.float32) / 255.0


def _decode_bytes(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise DecodeError(f"Failed to load image: {e}") from e
    return image


def _decode_string(source: str) -> Image.Image:
    if source.startswith(DATA_URL_PREFIX):
        header, sep, payload = source.partition(",")
        if not sep or not header.endswith(";base64"):
            raise DecodeError("Failed to load image: data URL is not base64 encoded")
    elif os.path.isfile(source):
        return _decode_path(Path(source))
    else:
        payload = source

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Failed to load image: invalid base64 data ({e})") from e
    return _decode_bytes(data)


def _decode_path(path: Path) -> Image.Image:
    try:
        data = path.read_bytes()
    except OSError as e:
        raise DecodeError(f"Failed to load image {path}: {e}") from e
    return _decode_bytes(data)


def decode_image(source: SourceImage) -> Image.Image:
    """
    Decode a source image reference into a fully loaded PIL image.

    The returned image is owned by the caller; PIL inputs are copied.

    Raises:
        DecodeError: the reference is empty, of an unknown type, or unreadable
    """
    if source is None:
        raise DecodeError("No source image")

    if isinstance(source, Image.Image):
        try:
            source.load()
        except (OSError, ValueError) as e:
            raise DecodeError(f"Failed to load image: {e}") from e
        image = source.copy()
    elif isinstance(source, (bytes, bytearray, memoryview)):
        if len(source) == 0:
            raise DecodeError("Failed to load image: empty buffer")
        image = _decode_bytes(bytes(source))
    elif isinstance(source, Path):
        image = _decode_path(source)
    elif isinstance(source, str):
        if not source:
            raise DecodeError("Failed to load image: empty string")
        image = _decode_string(source)
    elif isinstance(source, np.ndarray) or (HAS_TORCH and isinstance(source, torch.Tensor)):
        image = array_to_pil(to_numpy(source))
    else:
        raise DecodeError(f"Unsupported image source type: {type(source).__name__}")

    if image.width <= 0 or image.height <= 0:
        raise DecodeError(f"Decoded image has no pixels ({image.width}x{image.height})")
    return image


def encode_png(image: Image.Image) -> str:
    """
    Encode an image as a PNG data URL.

    Raises:
        EncodeError: Pillow could not write the image
    """
    buffer = io.BytesIO()
    try:
        # grayscale PNGs are written at most 16 bits deep
        if image.mode == "I":
            image = image.convert("I;16")
        elif image.mode not in PNG_MODES:
            image = image.convert("RGBA")
        image.save(buffer, format="PNG")
    except (OSError, ValueError, KeyError) as e:
        raise EncodeError(f"Failed to encode tile: {e}") from e
    return PNG_DATA_URL_PREFIX + base64.b64encode(buffer.getvalue()).decode("ascii")


def decode_data_url(data_url: str) -> Image.Image:
    """Decode a data URL produced by encode_png."""
    return _decode_string(data_url)


@dataclass(frozen=True)
class TileMetadata:
    row: int
    col: int
    index: int
    x: int
    y: int
    width: int
    height: int
    source_width: int
    source_height: int

    @classmethod
    def from_rect(cls, rect: TileRect, source_width: int, source_height: int) -> "TileMetadata":
        return cls(
            row=rect.row,
            col=rect.col,
            index=rect.index,
            x=rect.x,
            y=rect.y,
            width=rect.width,
            height=rect.height,
            source_width=source_width,
            source_height=source_height,
        )

    @property
    def crop(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row,
            "col": self.col,
            "index": self.index,
            "crop": self.crop,
            "sourceWidth": self.source_width,
            "sourceHeight": self.source_height,
        }


@dataclass(frozen=True)
class TileArtifact:
    """A rendered tile, keyed by the output handle it is routed through."""

    handle_id: str
    encoded_image: str
    metadata: TileMetadata

    def to_image(self) -> Image.Image:
        return decode_data_url(self.encoded_image)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handleId": self.handle_id,
            "imageBase64": self.encoded_image,
            "metadata": self.metadata.to_dict(),
        }


def _check_bounds(rects: Sequence[TileRect], width: int, height: int) -> None:
    for rect in rects:
        if rect.width <= 0 or rect.height <= 0:
            raise InvalidDimensions(f"Tile {rect.index} is empty ({rect.width}x{rect.height})")
        if rect.x < 0 or rect.y < 0 or rect.x + rect.width > width or rect.y + rect.height > height:
            raise InvalidDimensions(
                f"Tile {rect.index} {rect.crop} lies outside the {width}x{height} source image"
            )


def _crop_and_encode(image: Image.Image, rects: Sequence[TileRect]) -> List[TileArtifact]:
    width, height = image.size
    _check_bounds(rects, width, height)

    artifacts = []
    for rect in rects:
        tile = image.crop(rect.box)
        tile.load()
        artifacts.append(TileArtifact(
            handle_id=handle_id(rect.index),
            encoded_image=encode_png(tile),
            metadata=TileMetadata.from_rect(rect, width, height),
        ))
    return artifacts


async def load_image(source: SourceImage) -> Image.Image:
    """Decode a source image without blocking the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, decode_image, source)


async def render_tiles(source: SourceImage, rects: Sequence[TileRect]) -> List[TileArtifact]:
    """
    Render every tile rectangle as an independent PNG artifact.

    Either every tile is produced or the call raises; no partial result is
    ever returned.

    Args:
        source: Image reference (see decode_image) or an already decoded image
        rects: Tile rectangles, normally from compute_tiles for this image

    Returns:
        TileArtifacts in the same order as rects

    Raises:
        DecodeError: the source could not be decoded
        InvalidDimensions: a rect does not fit inside the decoded image
        EncodeError: a tile could not be encoded
    """
    image = await load_image(source)
    return await render_image_tiles(image, rects)


async def render_image_tiles(image: Image.Image, rects: Sequence[TileRect]) -> List[TileArtifact]:
    """Like render_tiles, for an image already returned by load_image or decode_image."""
    logger.debug("Rendering %d tiles from %dx%d source", len(rects), image.width, image.height)

    loop = asyncio.get_running_loop()
    artifacts = await loop.run_in_executor(None, _crop_and_encode, image, list(rects))

    logger.debug("Rendered %d tiles", len(artifacts))
    return artifacts


async def split_image(source: SourceImage, rows: int, columns: int) -> List[TileArtifact]:
    """Decode, lay out and render a rows x columns split in one call."""
    image = await load_image(source)
    rects = compute_tiles(image.width, image.height, rows, columns)
    return await render_image_tiles(image, rects)


def render_grid_preview(
    image: Image.Image,
    rects: Sequence[TileRect],
    line_width: int = 2,
    highlight_index: Optional[int] = 0,
) -> Image.Image:
    """
    Create a preview image with the tile boundaries drawn over the source.

    Draws:
    - Inner tile boundaries in semi-transparent red
    - The highlighted tile (tile 0 by default) outlined in green
    """
    preview = image.convert("RGB")
    draw = ImageDraw.Draw(preview, "RGBA")
    width, height = preview.size

    xs = sorted({rect.x for rect in rects if rect.x > 0})
    ys = sorted({rect.y for rect in rects if rect.y > 0})

    for x in xs:
        draw.line([(x, 0), (x, height)], fill=(255, 100, 100, 180), width=line_width)
    for y in ys:
        draw.line([(0, y), (width, y)], fill=(255, 100, 100, 180), width=line_width)

    if highlight_index is not None:
        for rect in rects:
            if rect.index != highlight_index:
                continue
            x0, y0, x1, y1 = rect.box
            draw.rectangle(
                [(x0, y0), (max(x0, x1 - 1), max(y0, y1 - 1))],
                outline=(0, 255, 0, 255),
                width=line_width,
            )

    return preview
