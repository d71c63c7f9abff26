"""Pytest configuration and fixtures."""

import logging
from pathlib import Path

import pytest
from PIL import Image

from niimbridge.config import DEFAULTS, ENV_PREFIXES, Direction, RenderMode, Settings

IPP_VARIABLES = (
    "IPP_MEDIA_COL",
    "IPP_MEDIA",
    "IPP_PRINT_QUALITY",
    "IPP_PRINT_DARKNESS",
    "CONTENT_TYPE",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Remove bridge and IPP variables inherited from the test runner."""
    for key in DEFAULTS:
        for prefix in ENV_PREFIXES:
            monkeypatch.delenv(prefix + key, raising=False)
    for key in IPP_VARIABLES:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def settings() -> Settings:
    """Settings with a printer name and defaults elsewhere."""
    return Settings(printer_name="D110_M-H1234567")


@pytest.fixture
def photo_settings() -> Settings:
    """Settings for photo rendering."""
    return Settings(printer_name="B21-C2345678", render=RenderMode.PHOTO)


@pytest.fixture
def left_settings() -> Settings:
    """Settings forcing left direction with pre-rotation."""
    return Settings(
        printer_name="D11-G0000001", direction=Direction.LEFT, rotate_for_left=True
    )


@pytest.fixture
def label_png(tmp_path: Path) -> Path:
    """A small RGBA PNG: black square on a transparent background."""
    img = Image.new("RGBA", (60, 200), (0, 0, 0, 0))
    for x in range(10, 50):
        for y in range(10, 50):
            img.putpixel((x, y), (0, 0, 0, 255))
    path = tmp_path / "label.png"
    img.save(path)
    return path


@pytest.fixture
def raster_png(tmp_path: Path) -> Path:
    """A 96x320 bilevel raster with a black top-left corner."""
    img = Image.new("1", (96, 320), 1)
    for x in range(8):
        for y in range(4):
            img.putpixel((x, y), 0)
    path = tmp_path / "raster.png"
    img.save(path)
    return path


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo handlers installed by the CLI's setup_logging()."""
    root = logging.getLogger()
    package = logging.getLogger("niimbridge")
    handlers, level, package_level = root.handlers[:], root.level, package.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    package.setLevel(package_level)
