"""Corrections for devices that report the wrong print direction."""

import logging
import re
from dataclasses import dataclass

from niimbridge.printing.base import DeviceMetadata

logger = logging.getLogger(__name__)

DEFAULT_DIRECTION = "top"


@dataclass(frozen=True)
class DirectionQuirk:
    """Force a direction for models whose metadata is known to be wrong.

    Attributes:
        model_pattern: Regex matched (case-insensitively) against the model.
        reported: Direction the device reports.
        forced: Direction to use instead.
    """

    model_pattern: str
    reported: str
    forced: str

    def applies_to(self, metadata: DeviceMetadata) -> bool:
        return (
            metadata.print_direction == self.reported
            and re.search(self.model_pattern, metadata.model, re.IGNORECASE) is not None
        )


# D100/D110 "M" revisions report "left" but print correctly only with "top"
DIRECTION_QUIRKS: tuple[DirectionQuirk, ...] = (
    DirectionQuirk(model_pattern=r"D1(00|10)_?M", reported="left", forced="top"),
)


def resolve_direction(
    override: str,
    metadata: DeviceMetadata | None,
    quirks: tuple[DirectionQuirk, ...] = DIRECTION_QUIRKS,
) -> str:
    """Pick the print direction for a job.

    An explicit override always wins, then quirk corrections, then the
    device-reported default.

    Args:
        override: Direction from settings ("" = not set).
        metadata: Device metadata, if the link reported any.
        quirks: Quirk rules to apply.

    Returns:
        str: Effective direction.
    """
    if override:
        return override

    if metadata is None:
        return DEFAULT_DIRECTION

    for quirk in quirks:
        if quirk.applies_to(metadata):
            logger.info(
                f"overriding printDirection {quirk.reported}->{quirk.forced} "
                f"for model {metadata.model}"
            )
            return quirk.forced

    return metadata.print_direction or DEFAULT_DIRECTION
