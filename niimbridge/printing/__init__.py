"""Printer link abstraction.

Provides the link interface the bridge prints through, the image encoder and
the device quirk table. Use get_link() to get the Bluetooth LE link for a
printer name.
"""

from niimbridge.printing.base import DeviceMetadata, EncodedImage, PrinterError, PrinterLink
from niimbridge.printing.encoder import encode_image
from niimbridge.printing.quirks import DIRECTION_QUIRKS, DirectionQuirk, resolve_direction


def get_link(printer_name: str) -> PrinterLink:
    """Factory function that returns the link for a printer.

    Args:
        printer_name: Advertised Bluetooth name of the printer.

    Returns:
        PrinterLink: Link instance (not yet connected).
    """
    from niimbridge.printing.ble import NiimbotBleLink

    return NiimbotBleLink(printer_name)


__all__ = [
    "DIRECTION_QUIRKS",
    "DeviceMetadata",
    "DirectionQuirk",
    "EncodedImage",
    "PrinterError",
    "PrinterLink",
    "encode_image",
    "get_link",
    "resolve_direction",
]
