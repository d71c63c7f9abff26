"""Job pipeline - rasterises a job file and prints it on the label printer."""

import asyncio
import logging
import shutil
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from PIL import Image

from niimbridge.config import Settings
from niimbridge.errors import PrintError, UsageError
from niimbridge.ipp import ProtocolHints, map_density, report_completion, resolve_size
from niimbridge.printing import (
    DIRECTION_QUIRKS,
    DirectionQuirk,
    EncodedImage,
    PrinterLink,
    encode_image,
    get_link,
    resolve_direction,
)
from niimbridge.raster import Rasterizer, detect_source_kind, plan_raster

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "niimbot-ipp-"


class LinkState(str, Enum):
    """Print orchestrator states."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ENCODING = "encoding"
    TRANSMITTING = "transmitting"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Job:
    """One print job and its temporary workspace.

    Attributes:
        source: Job file handed over by the front-end.
        working_dir: Temporary directory owned by this job.
    """

    source: Path
    working_dir: Path

    @property
    def raster_path(self) -> Path:
        return self.working_dir / "job.png"


@dataclass(frozen=True)
class PrintDirective:
    """Everything needed to transmit one raster."""

    raster_path: Path
    direction: str
    density: int
    label_type: int
    quantity: int


def resolve_job_path(job_file: str | None) -> Path:
    """Validate the job file argument.

    Args:
        job_file: Path given on the command line ("-" or None = no file).

    Returns:
        Path: Existing job file.

    Raises:
        UsageError: If no file was given or it does not exist.
    """
    if not job_file or job_file == "-":
        raise UsageError("No job file path provided")
    path = Path(job_file)
    if not path.is_file():
        raise UsageError(f"Job file not found: {path}")
    return path


@contextmanager
def job_workspace(source: Path) -> Iterator[Job]:
    """Create the job's temporary directory and remove it on exit.

    Removal failures are logged and never replace an error from the job.
    """
    working_dir = Path(tempfile.mkdtemp(prefix=WORKSPACE_PREFIX))
    try:
        yield Job(source=source, working_dir=working_dir)
    finally:
        try:
            shutil.rmtree(working_dir)
        except OSError as e:
            logger.warning(f"Could not remove {working_dir}: {e}")


class PrintOrchestrator:
    """Drives one raster through connect, encode, transmit and disconnect.

    State flow:
    DISCONNECTED -> CONNECTED -> ENCODING -> TRANSMITTING -> COMPLETED
    (or FAILED from any step) -> DISCONNECTED
    """

    def __init__(
        self,
        settings: Settings,
        link: PrinterLink,
        quirks: tuple[DirectionQuirk, ...] = DIRECTION_QUIRKS,
    ):
        """Initialize the orchestrator.

        Args:
            settings: Resolved settings.
            link: Printer link (not yet connected).
            quirks: Direction quirk rules.
        """
        self.settings = settings
        self.link = link
        self.quirks = quirks
        self.state = LinkState.DISCONNECTED
        self.transitions: list[LinkState] = [self.state]

    def _enter(self, state: LinkState) -> None:
        self.state = state
        self.transitions.append(state)

    async def run(self, raster_path: Path, density: int) -> PrintDirective:
        """Print a raster file.

        Args:
            raster_path: Bilevel raster produced by the rasterizer.
            density: Thermal density 1-5.

        Returns:
            PrintDirective: What was sent to the printer.

        Raises:
            PrintError: If connecting, encoding or transmitting fails.
        """
        settings = self.settings
        try:
            await self.link.connect()
            self._enter(LinkState.CONNECTED)

            directive = PrintDirective(
                raster_path=raster_path,
                direction=resolve_direction(
                    settings.direction.value, self.link.get_metadata(), self.quirks
                ),
                density=density,
                label_type=settings.label_type,
                quantity=settings.quantity,
            )

            self._enter(LinkState.ENCODING)
            encoded = self.encode(directive)

            self._enter(LinkState.TRANSMITTING)
            await self.link.print_image(
                encoded,
                density=directive.density,
                label_type=directive.label_type,
                quantity=directive.quantity,
            )
            self._enter(LinkState.COMPLETED)

            logger.info(
                f"Printed density {directive.density}, direction {directive.direction}, "
                f"qty {directive.quantity}"
            )
            report_completion(directive.quantity)
            return directive
        except Exception as err:
            self._enter(LinkState.FAILED)
            logger.exception("Print failed")
            raise PrintError(f"Print failed: {err}") from err
        finally:
            await self._disconnect()

    def encode(self, directive: PrintDirective) -> EncodedImage:
        """Load the raster, rotate it if configured, and encode it."""
        with Image.open(directive.raster_path) as raster:
            image = raster.convert("1")

        if directive.direction == "left" and self.settings.rotate_for_left:
            image = image.transpose(Image.Transpose.ROTATE_270)
            logger.info("rotated raster 90 degrees for left-direction compatibility")

        return encode_image(image, directive.direction)

    async def _disconnect(self) -> None:
        try:
            await self.link.disconnect()
        except Exception as e:
            logger.warning(f"Disconnect failed: {e}")
        self._enter(LinkState.DISCONNECTED)


async def process_job(
    job_file: str | None,
    settings: Settings,
    hints: ProtocolHints,
    link_factory: Callable[[str], PrinterLink] | None = None,
    spool_dir: Path | None = None,
) -> PrintDirective:
    """Run the whole pipeline for one job.

    Args:
        job_file: Job file path from the command line.
        settings: Resolved settings.
        hints: IPP job attributes.
        link_factory: Creates the printer link (default: get_link).
        spool_dir: Debug copy directory (default: ./.spool).

    Returns:
        PrintDirective: What was sent to the printer.

    Raises:
        UsageError: If the job file is missing.
        RasterizationError: If the job cannot be rasterised.
        PrintError: If printing fails.
    """
    source = resolve_job_path(job_file)
    link_factory = link_factory or get_link

    size = resolve_size(hints)
    density = map_density(hints.darkness, hints.quality)
    kind = detect_source_kind(source, hints.content_type)
    plan = plan_raster(size, settings.render, settings.threshold, kind)

    logger.info(f"IPP_MEDIA={hints.media}")
    logger.info(f"IPP_MEDIA_COL={hints.media_col}")
    logger.info(f"chosen mm = {size.width_mm}x{size.height_mm} -> {plan.width_px}x{plan.height_px}px")
    logger.info(f"quality={hints.quality} darkness={hints.darkness} density={density}")
    logger.info(f"render={settings.render.value} threshold={settings.threshold}")

    with job_workspace(source) as job:
        rasterizer = Rasterizer(plan, debug=settings.debug, spool_dir=spool_dir)
        await asyncio.to_thread(rasterizer.rasterize, source, job.raster_path, kind)

        orchestrator = PrintOrchestrator(settings, link_factory(settings.printer_name))
        return await orchestrator.run(job.raster_path, density)
