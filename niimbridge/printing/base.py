"""Abstract printer link interface."""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


class PrinterError(Exception):
    """Error talking to the printer."""

    pass


@dataclass(frozen=True)
class DeviceMetadata:
    """What the connected printer reports about itself.

    Attributes:
        model: Model identifier (e.g. "D110_M").
        print_direction: Default print direction for the model.
    """

    model: str = ""
    print_direction: str = "top"


@dataclass(frozen=True)
class EncodedImage:
    """Raster packed for transmission.

    Attributes:
        width: Pixels per printed row.
        height: Number of printed rows.
        rows: Packed rows, MSB first, 1 = black.
        direction: Direction the raster was encoded for.
    """

    width: int
    height: int
    rows: list[bytes] = field(default_factory=list)
    direction: str = "top"


@runtime_checkable
class PrinterLink(Protocol):
    """Protocol defining the printer link interface.

    All transport implementations must satisfy this protocol.
    """

    async def connect(self) -> None:
        """Establish the link.

        Raises:
            PrinterError: If the printer cannot be reached.
        """
        ...

    async def disconnect(self) -> None:
        """Close the link. Safe to call when not connected."""
        ...

    def get_metadata(self) -> DeviceMetadata | None:
        """Get metadata reported by the connected device.

        Returns:
            DeviceMetadata | None: Metadata, or None if unknown.
        """
        ...

    async def print_image(
        self,
        image: EncodedImage,
        density: int = 3,
        label_type: int = 1,
        quantity: int = 1,
    ) -> None:
        """Print an encoded image.

        Args:
            image: Encoded raster.
            density: Thermal density 1-5.
            label_type: Label type code.
            quantity: Number of labels.

        Raises:
            PrinterError: If transmission fails.
        """
        ...
