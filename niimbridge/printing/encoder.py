"""Pack a bilevel raster into printer rows."""

from PIL import Image, ImageOps

from niimbridge.printing.base import EncodedImage

# Transpose applied so rows run along the print head for each direction
_DIRECTION_TRANSPOSE = {
    "top": None,
    "left": Image.Transpose.ROTATE_270,
    "bottom": Image.Transpose.ROTATE_180,
    "right": Image.Transpose.ROTATE_90,
}


def encode_image(image: Image.Image, direction: str = "top") -> EncodedImage:
    """Encode an image for transmission.

    Args:
        image: Label raster (any mode, converted to 1-bit).
        direction: Print direction (top, left, right or bottom).

    Returns:
        EncodedImage: Packed rows, 1 = black.

    Raises:
        ValueError: If the direction is unknown.
    """
    if direction not in _DIRECTION_TRANSPOSE:
        raise ValueError(f"Unknown print direction: {direction!r}")

    transpose = _DIRECTION_TRANSPOSE[direction]
    if transpose is not None:
        image = image.transpose(transpose)

    # "1" mode packs white as 1; invert so set bits burn dots
    inverted = ImageOps.invert(image.convert("L")).point(lambda p: 255 if p >= 128 else 0, mode="1")
    data = inverted.tobytes()
    stride = (inverted.width + 7) // 8

    rows = [data[y * stride : (y + 1) * stride] for y in range(inverted.height)]
    return EncodedImage(width=inverted.width, height=inverted.height, rows=rows, direction=direction)
