"""
GridSplitState - data model of a grid split node

Holds the grid configuration, the source image reference, the rendered
tiles and the render status. Every configuration edit or source change
starts a new epoch and empties the outputs; a render only writes its
result back if it is the latest render issued in the current epoch.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import DecodeError, EncodeError, GridSplitError, InvalidDimensions
from .grid_geometry import GridConfig, compute_tiles
from .tile_ports import PortDescriptor, compute_ports
from .tile_renderer import SourceImage, TileArtifact, load_image, render_image_tiles

logger = logging.getLogger(__name__)


class Status(str, Enum):
    IDLE = "idle"
    READY = "ready"
    LOADING = "loading"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class RenderSnapshot:
    """The configuration a render was issued against."""

    epoch: int
    request: int
    config: GridConfig
    source: Any


class GridSplitState:
    """
    State of one grid split node.

    Owned by a single asyncio event loop. Edits are synchronous and never
    wait for an in-flight render; stale render results are dropped when
    they arrive.
    """

    def __init__(
        self,
        config: Optional[GridConfig] = None,
        source_image: Optional[SourceImage] = None,
        auto_render: bool = False,
    ):
        self._config = config or GridConfig()
        self._source = None
        self._outputs: Dict[str, TileArtifact] = {}
        self._status = Status.IDLE
        self._error: Optional[str] = None
        self._epoch = 0
        self._request = 0
        self._task: Optional[asyncio.Task] = None
        self.auto_render = auto_render

        if source_image is not None:
            self.set_source_image(source_image)

    @property
    def config(self) -> GridConfig:
        return self._config

    @property
    def rows(self) -> int:
        return self._config.rows

    @property
    def columns(self) -> int:
        return self._config.columns

    @property
    def tile_count(self) -> int:
        return self._config.tile_count

    @property
    def exceeds_max(self) -> bool:
        return self._config.exceeds_max

    @property
    def source_image(self) -> Optional[SourceImage]:
        return self._source

    @property
    def outputs(self) -> Dict[str, TileArtifact]:
        return dict(self._outputs)

    @property
    def status(self) -> Status:
        return self._status

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def ports(self) -> List[PortDescriptor]:
        return compute_ports(self._config.rows, self._config.columns)

    def set_config(self, rows: Optional[int] = None, columns: Optional[int] = None) -> None:
        """
        Apply a grid edit. Omitted values keep their current setting.

        Raises:
            InvalidConfig: a value is outside the supported range; the state
                is left untouched
        """
        config = GridConfig(
            rows=self._config.rows if rows is None else rows,
            columns=self._config.columns if columns is None else columns,
        )
        self._config = config
        if config.exceeds_max:
            logger.warning(
                "Grid %dx%d has %d tiles, more than the recommended maximum",
                config.rows, config.columns, config.tile_count,
            )
        self._invalidate("config changed to %dx%d" % (config.rows, config.columns))

    def set_rows(self, rows: int) -> None:
        self.set_config(rows=rows)

    def set_columns(self, columns: int) -> None:
        self.set_config(columns=columns)

    def set_source_image(self, source_image: Optional[SourceImage]) -> None:
        """Attach, replace or (with None) remove the source image."""
        self._source = source_image
        self._invalidate("source image %s" % ("removed" if source_image is None else "replaced"))

    def _invalidate(self, reason: str) -> None:
        self._epoch += 1
        self._outputs = {}
        self._error = None
        self._status = Status.IDLE if self._source is None else Status.READY
        logger.info("Epoch %d: %s, status %s", self._epoch, reason, self._status.value)

        if self.auto_render and self._source is not None:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("No running event loop, render left to the caller")
            else:
                self.request_render()

    def _begin_render(self) -> RenderSnapshot:
        if self._source is None:
            raise GridSplitError("Cannot render without a source image")

        self._request += 1
        snapshot = RenderSnapshot(
            epoch=self._epoch,
            request=self._request,
            config=self._config,
            source=self._source,
        )
        self._status = Status.LOADING
        self._error = None
        logger.info(
            "Epoch %d: rendering %dx%d grid",
            snapshot.epoch, snapshot.config.rows, snapshot.config.columns,
        )
        return snapshot

    def _is_current(self, snapshot: RenderSnapshot) -> bool:
        """Only the latest render issued in the current epoch may write back."""
        return snapshot.epoch == self._epoch and snapshot.request == self._request

    def _apply_failure(self, snapshot: RenderSnapshot, message: str) -> bool:
        if not self._is_current(snapshot):
            logger.warning(
                "Discarding failure of stale render (epoch %d, current %d): %s",
                snapshot.epoch, self._epoch, message,
            )
            return False
        self._outputs = {}
        self._status = Status.ERROR
        self._error = message
        return True

    async def _run_render(self, snapshot: RenderSnapshot) -> bool:
        try:
            image = await load_image(snapshot.source)
            rects = compute_tiles(
                image.width, image.height, snapshot.config.rows, snapshot.config.columns
            )
            artifacts = await render_image_tiles(image, rects)
        except (InvalidDimensions, DecodeError, EncodeError) as e:
            logger.error("Epoch %d: render failed: %s", snapshot.epoch, e)
            return self._apply_failure(snapshot, str(e))
        except Exception as e:
            logger.exception("Epoch %d: unexpected render failure", snapshot.epoch)
            return self._apply_failure(snapshot, f"Render failed: {e}")

        if not self._is_current(snapshot):
            logger.warning(
                "Discarding stale render (epoch %d, current %d)", snapshot.epoch, self._epoch
            )
            return False

        self._outputs = {artifact.handle_id: artifact for artifact in artifacts}
        self._status = Status.COMPLETE
        logger.info("Epoch %d: rendered %d tiles", snapshot.epoch, len(artifacts))
        return True

    async def render(self) -> bool:
        """
        Render the current configuration and apply the result.

        Returns:
            True if the result (success or failure) was applied, False if the
            configuration changed or a newer render was issued while rendering,
            and the result was dropped

        Raises:
            GridSplitError: no source image is attached
        """
        snapshot = self._begin_render()
        return await self._run_render(snapshot)

    def request_render(self) -> asyncio.Task:
        """
        Schedule a render on the running event loop.

        A previously requested render keeps running, but only the latest
        request of the current configuration writes its result back.
        """
        snapshot = self._begin_render()
        self._task = asyncio.get_running_loop().create_task(self._run_render(snapshot))
        return self._task

    async def wait(self) -> Optional[bool]:
        """Wait for the most recently requested render."""
        if self._task is None:
            return None
        return await self._task

    def snapshot(self) -> Dict[str, Any]:
        """Plain view of the node state for the hosting environment."""
        return {
            "rows": self._config.rows,
            "columns": self._config.columns,
            "tileCount": self._config.tile_count,
            "exceedsMax": self._config.exceeds_max,
            "hasSourceImage": self._source is not None,
            "status": self._status.value,
            "error": self._error,
            "ports": [
                {
                    "handleId": port.handle_id,
                    "label": port.label,
                    "positionFraction": port.position_fraction,
                }
                for port in self.ports
            ],
            "outputs": {
                key: artifact.metadata.to_dict() for key, artifact in self._outputs.items()
            },
        }
