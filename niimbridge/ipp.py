"""IPP job attributes supplied by the print front-end.

ippeveprinter passes job attributes to its print command as IPP_* environment
variables. This module turns them into a physical label size and a thermal
density, and writes the completion attributes back on stderr.
"""

import logging
import math
import re
from dataclasses import dataclass

import click
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from niimbridge.config import parse_int

logger = logging.getLogger(__name__)

# Label size used when the job carries no usable media attributes
DEFAULT_SIZE_MM = (12, 40)
MIN_MEDIA_COL_MM = 6

_X_DIMENSION = re.compile(r"x-dimension\s*=\s*([0-9]+)", re.IGNORECASE)
_Y_DIMENSION = re.compile(r"y-dimension\s*=\s*([0-9]+)", re.IGNORECASE)
_MEDIA_KEYWORD = re.compile(r"([0-9]{2})x([0-9]{2,3})mm", re.IGNORECASE)

QUALITY_DENSITY = {"draft": 2, "high": 5}
DEFAULT_DENSITY = 3


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return math.floor(value + 0.5)


@dataclass(frozen=True)
class PhysicalSize:
    """Label size in millimetres."""

    width_mm: int
    height_mm: int


class ProtocolHints(BaseSettings):
    """Job attributes read from the front-end's environment.

    Attributes:
        media_col: Raw media-col collection (e.g. "{media-size={x-dimension=1200 ...}}").
        media: Raw media keyword (e.g. "om_12x40mm_12x40mm").
        quality: Print quality keyword (draft, normal, high or empty).
        darkness: Print darkness 0-100 as a string, or empty.
        content_type: MIME type of the job file.
    """

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    media_col: str = Field(default="", validation_alias="IPP_MEDIA_COL")
    media: str = Field(default="", validation_alias="IPP_MEDIA")
    quality: str = Field(default="", validation_alias="IPP_PRINT_QUALITY")
    darkness: str = Field(default="", validation_alias="IPP_PRINT_DARKNESS")
    content_type: str = Field(default="", validation_alias="CONTENT_TYPE")

    @field_validator("quality")
    @classmethod
    def normalize_quality(cls, v: str) -> str:
        """Quality keywords are compared lower-case."""
        return v.strip().lower()


def parse_media_col(media_col: str) -> PhysicalSize | None:
    """Extract the label size from a media-col collection.

    Dimensions in media-col are hundredths of a millimetre.

    Args:
        media_col: Raw IPP_MEDIA_COL value.

    Returns:
        PhysicalSize | None: Size in mm (each at least 6mm) or None if either
            dimension is missing.
    """
    x = _X_DIMENSION.search(media_col)
    y = _Y_DIMENSION.search(media_col)
    if not x or not y:
        return None
    return PhysicalSize(
        width_mm=max(MIN_MEDIA_COL_MM, round_half_up(int(x.group(1)) / 100)),
        height_mm=max(MIN_MEDIA_COL_MM, round_half_up(int(y.group(1)) / 100)),
    )


def parse_media_keyword(media: str) -> PhysicalSize | None:
    """Parse "om_12x40mm" style media keywords."""
    match = _MEDIA_KEYWORD.search(media)
    if not match:
        return None
    return PhysicalSize(width_mm=int(match.group(1)), height_mm=int(match.group(2)))


def resolve_size(hints: ProtocolHints) -> PhysicalSize:
    """Pick the label size: media-col, then media keyword, then 12x40mm.

    Args:
        hints: Job attributes.

    Returns:
        PhysicalSize: Label size in millimetres.
    """
    size = parse_media_col(hints.media_col) or parse_media_keyword(hints.media)
    if size is None:
        size = PhysicalSize(*DEFAULT_SIZE_MM)
    return size


def map_density(darkness: str | None, quality: str | None) -> int:
    """Map IPP darkness/quality to a thermal density 1-5.

    Args:
        darkness: Darkness 0-100 as a string (takes precedence when numeric).
        quality: Print quality keyword.

    Returns:
        int: Density in [1, 5].
    """
    level = parse_int(darkness) if darkness else None
    if level is not None:
        level = max(0, min(100, level))
        return min(5, max(1, round_half_up(level / 20)))

    return QUALITY_DENSITY.get((quality or "").lower(), DEFAULT_DENSITY)


def report_completion(quantity: int) -> None:
    """Tell the front-end the job is done so it clears the queue.

    Args:
        quantity: Number of labels printed.
    """
    click.echo(f"ATTR: job-impressions={quantity} job-impressions-completed={quantity}", err=True)
    click.echo("INFO: Print complete", err=True)
