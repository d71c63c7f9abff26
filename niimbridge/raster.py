"""Label rasterisation.

Turns a job file into a 1-bit PNG at the printer's resolution. Bitmap inputs
are processed with Pillow; PDF and other document inputs go through
ImageMagick's convert.
"""

import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from PIL import Image, ImageOps

from niimbridge.config import RenderMode, parse_int
from niimbridge.errors import RasterizationError
from niimbridge.ipp import PhysicalSize, round_half_up

logger = logging.getLogger(__name__)

# ~203 dpi thermal head
PIXELS_PER_MM = 8
# Printer addresses the head in whole bytes
WIDTH_MULTIPLE = 8
MIN_WIDTH_PX = 8
MIN_HEIGHT_PX = 16

PHOTO_THRESHOLD = 128
DEFAULT_TEXT_THRESHOLD = 153
DEFAULT_CONVERT_THRESHOLD = "60%"

FIT_CONTAIN = "contain"

# Documents are rendered at twice the head resolution before downscaling
DOCUMENT_DENSITY_PPI = 406
CONVERT_COMMAND = "convert"
RASTER_TIMEOUT = 120

BITMAP_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".gif", ".tif", ".tiff"}


class SourceKind(str, Enum):
    """How a job file is decoded."""

    BITMAP = "bitmap"
    DOCUMENT = "document"


@dataclass(frozen=True)
class RasterPlan:
    """Target raster geometry and processing parameters for one job.

    Attributes:
        width_px: Raster width, a multiple of 8.
        height_px: Raster height.
        fit_mode: Resize strategy. Only "contain" (keep aspect, pad with
            white) is supported.
        threshold: Grey level (0-255) at or above which a pixel is white.
        convert_threshold: ImageMagick -threshold argument for documents.
        dither: Use Floyd-Steinberg dithering instead of a hard threshold.
        sharpen: Apply unsharp masking before thresholding.
    """

    width_px: int
    height_px: int
    fit_mode: str = FIT_CONTAIN
    threshold: int = PHOTO_THRESHOLD
    convert_threshold: str = "50%"
    dither: bool = False
    sharpen: bool = False

    @property
    def size(self) -> tuple[int, int]:
        return (self.width_px, self.height_px)


def mm_to_px(mm: float) -> int:
    return round_half_up(mm * PIXELS_PER_MM)


def parse_threshold(threshold: str) -> int:
    """Convert a threshold setting to a grey level.

    The leading integer is used as a 0-255 level, so "60%" gives 60.

    Args:
        threshold: Threshold setting.

    Returns:
        int: Grey level in [0, 255], or DEFAULT_TEXT_THRESHOLD if non-numeric.
    """
    value = parse_int(threshold)
    if value is None:
        return DEFAULT_TEXT_THRESHOLD
    return max(0, min(255, value))


def convert_threshold_arg(threshold: str) -> str:
    """ImageMagick -threshold argument for a threshold setting ("60%" as is)."""
    if parse_int(threshold) is None:
        return DEFAULT_CONVERT_THRESHOLD
    return threshold.strip()


def detect_source_kind(path: Path, content_type: str = "") -> SourceKind:
    """Decide whether a job file is a bitmap or a document.

    Args:
        path: Job file path.
        content_type: MIME type reported by the front-end.

    Returns:
        SourceKind: BITMAP for raster images, DOCUMENT otherwise.
    """
    if path.suffix.lower() in BITMAP_EXTENSIONS:
        return SourceKind.BITMAP
    mime = content_type.split(";")[0].strip().lower()
    if mime.startswith("image/") and mime != "image/svg+xml":
        return SourceKind.BITMAP
    return SourceKind.DOCUMENT


def plan_raster(
    size: PhysicalSize,
    render: RenderMode,
    threshold: str = "60%",
    kind: SourceKind = SourceKind.BITMAP,
) -> RasterPlan:
    """Compute the raster plan for a label.

    Args:
        size: Physical label size.
        render: Render mode.
        threshold: Threshold setting used in text mode.
        kind: Source kind of the job file.

    Returns:
        RasterPlan: Pixel geometry and processing parameters.
    """
    raw_width = mm_to_px(size.width_mm)
    width_px = max(MIN_WIDTH_PX, raw_width - raw_width % WIDTH_MULTIPLE)
    height_px = max(MIN_HEIGHT_PX, mm_to_px(size.height_mm))

    if render == RenderMode.PHOTO:
        return RasterPlan(
            width_px=width_px,
            height_px=height_px,
            threshold=PHOTO_THRESHOLD,
            dither=kind == SourceKind.DOCUMENT,
        )

    return RasterPlan(
        width_px=width_px,
        height_px=height_px,
        threshold=parse_threshold(threshold),
        convert_threshold=convert_threshold_arg(threshold),
        sharpen=kind == SourceKind.DOCUMENT,
    )


def check_fit_mode(plan: RasterPlan) -> None:
    if plan.fit_mode != FIT_CONTAIN:
        raise RasterizationError(f"Unsupported fit mode: {plan.fit_mode}")


def to_rgba(image: Image.Image) -> Image.Image:
    """Convert a decoded image to RGBA.

    16-bit and 32-bit greyscale images are scaled to 8 bits first; a plain
    convert would clip everything above 255 to white.
    """
    if image.mode == "I" or image.mode.startswith("I;16"):
        image = image.convert("I").point(lambda p: p * (1 / 256)).convert("L")
    return image.convert("RGBA")


def save_debug_copy(
raster: Path, spool_dir: Path) -> Path | None:
    """Keep a timestamped copy of a raster for debugging.

    Never raises; a failed copy is only logged.

    Args:
        raster: Raster file to copy.
        spool_dir: Directory for debug copies.

    Returns:
        Path | None: Path of the copy, or None if it failed.
    """
    target = spool_dir / f"job-{time.time_ns() // 1_000_000}.png"
    try:
        spool_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(raster, target)
    except OSError as e:
        logger.warning(f"Could not save debug copy to {target}: {e}")
        return None
    logger.info(f"Saved debug copy to {target}")
    return target


class Rasterizer:
    """Produce a bilevel label image following a RasterPlan."""

    def __init__(
        self,
        plan: RasterPlan,
        debug: bool = False,
        spool_dir: Path | None = None,
        timeout: float | None = RASTER_TIMEOUT,
    ):
        """Initialize the rasterizer.

        Args:
            plan: Raster plan for the job.
            debug: Save a copy of each raster to spool_dir.
            spool_dir: Debug copy directory (default: ./.spool).
            timeout: Seconds to wait for ImageMagick (None = no limit).
        """
        self.plan = plan
        self.debug = debug
        self.spool_dir = spool_dir or Path(".spool")
        self.timeout = timeout

    def rasterize(self, source: Path, output: Path, kind: SourceKind | None = None) -> Path:
        """Convert a job file into the output PNG.

        Args:
            source: Job file.
            output: Destination PNG path.
            kind: Source kind (detected from the extension when omitted).

        Returns:
            Path: The output path.

        Raises:
            RasterizationError: If decoding or conversion fails.
        """
        kind = kind or detect_source_kind(source)
        logger.info(f"Converting {source} -> {output} ({kind.value})")

        try:
            if kind == SourceKind.BITMAP:
                self._rasterize_bitmap(source, output)
            else:
                self._rasterize_document(source, output)
        except RasterizationError:
            output.unlink(missing_ok=True)
            raise
        except Exception as err:
            output.unlink(missing_ok=True)
            raise RasterizationError(f"Rasterisation failed: {err}") from err

        if self.debug:
            save_debug_copy(output, self.spool_dir)

        return output

    def _rasterize_bitmap(self, source: Path, output: Path) -> None:
        plan = self.plan
        check_fit_mode(plan)
        with Image.open(source) as original:
            img = to_rgba(original)

        background = Image.new("RGBA", img.size, "white")
        flat = Image.alpha_composite(background, img).convert("RGB")

        fitted = ImageOps.pad(
            flat, plan.size, method=Image.Resampling.NEAREST, color="white"
        )
        gray = fitted.convert("L")
        threshold = plan.threshold
        bilevel = gray.point(lambda p: 255 if p >= threshold else 0, mode="1")
        bilevel.save(output, format="PNG")

    def convert_args(self, source: Path, output: Path) -> list[str]:
        """Build the ImageMagick command line for a document job."""
        plan = self.plan
        check_fit_mode(plan)
        geometry = f"{plan.width_px}x{plan.height_px}"
        args = [
            CONVERT_COMMAND,
            "-units", "PixelsPerInch",
            "-density", str(DOCUMENT_DENSITY_PPI),
            str(source),
            "-colorspace", "Gray",
            "-alpha", "remove",
            "-background", "white",
            "-flatten",
            "-filter", "box",
            "-resize", geometry,
            "-gravity", "center",
            "-extent", geometry,
        ]  # fmt: skip

        if plan.dither:
            args += ["-dither", "FloydSteinberg", "-colors", "2"]
        else:
            if plan.sharpen:
                args += ["-unsharp", "0x1+0.8+0.02"]
            args += ["-threshold", plan.convert_threshold]

        args += ["-type", "bilevel", str(output)]
        return args

    def _rasterize_document(self, source: Path, output: Path) -> None:
        cmd = self.convert_args(source, output)
        logger.debug(f"Convert command: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as err:
            raise RasterizationError("convert timed out") from err
        except FileNotFoundError as err:
            raise RasterizationError("convert command not found - is ImageMagick installed?") from err

        if result.returncode != 0:
            raise RasterizationError(
                f"convert failed (exit {result.returncode}): {result.stderr.strip()}"
            )
