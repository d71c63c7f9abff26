"""Tests for the rasterizer."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from niimbridge.config import RenderMode
from niimbridge.errors import RasterizationError
from niimbridge.ipp import PhysicalSize
from niimbridge.raster import RasterPlan, Rasterizer, SourceKind, plan_raster, save_debug_copy


@pytest.fixture
def plan() -> RasterPlan:
    return RasterPlan(width_px=96, height_px=320, threshold=153)


class TestBitmapRasterization:
    def test_output_is_bilevel_at_exact_size(self, plan, label_png, tmp_path: Path):
        output = tmp_path / "out.png"

        Rasterizer(plan).rasterize(label_png, output)

        with Image.open(output) as img:
            assert img.mode == "1"
            assert img.size == (96, 320)

    def test_transparency_becomes_white(self, plan, label_png, tmp_path: Path):
        """Transparent areas are flattened onto white; opaque black stays black."""
        output = tmp_path / "out.png"

        Rasterizer(plan).rasterize(label_png, output)

        with Image.open(output) as img:
            gray = img.convert("L")
            # Corners are padding/transparent background
            assert gray.getpixel((0, 0)) == 255
            assert gray.getpixel((95, 319)) == 255
            # 60x200 scales 1.6x to 96x320, square lands around (16..80, 16..80)
            assert gray.getpixel((40, 40)) == 0

    def test_threshold_applied(self, tmp_path: Path):
        """Grey above the threshold is white, below is black."""
        source = tmp_path / "grey.png"
        img = Image.new("L", (96, 320), 200)
        img.paste(100, (0, 0, 48, 320))
        img.save(source)
        output = tmp_path / "out.png"

        Rasterizer(RasterPlan(96, 320, threshold=153)).rasterize(source, output)

        with Image.open(output) as result:
            gray = result.convert("L")
            assert gray.getpixel((10, 10)) == 0
            assert gray.getpixel((80, 10)) == 255

    def test_default_text_threshold_keeps_mid_grey_white(self, tmp_path: Path):
        """With the default "60%" setting, grey 100 stays white and grey 40 prints."""
        source = tmp_path / "grey.png"
        img = Image.new("L", (96, 320), 100)
        img.paste(40, (0, 0, 48, 320))
        img.save(source)
        output = tmp_path / "out.png"
        plan = plan_raster(PhysicalSize(12, 40), RenderMode.TEXT, "60%")

        Rasterizer(plan).rasterize(source, output)

        with Image.open(output) as result:
            gray = result.convert("L")
            assert gray.getpixel((10, 10)) == 0
            assert gray.getpixel((80, 10)) == 255

    def test_sixteen_bit_greyscale_is_scaled(self, tmp_path: Path):
        """16-bit grey levels are scaled to 8 bits rather than clipped to white."""
        source = tmp_path / "deep.png"
        img = Image.new("I;16", (96, 320), 50000)
        img.paste(10000, (0, 0, 48, 320))
        img.save(source)
        output = tmp_path / "out.png"

        Rasterizer(RasterPlan(96, 320, threshold=128)).rasterize(source, output)

        with Image.open(output) as result:
            gray = result.convert("L")
            assert gray.getpixel((10, 10)) == 0
            assert gray.getpixel((80, 10)) == 255

    def test_unsupported_fit_mode(self, label_png, tmp_path: Path):
        output = tmp_path / "out.png"

        with pytest.raises(RasterizationError, match="fit mode"):
            Rasterizer(RasterPlan(96, 320, fit_mode="cover")).rasterize(label_png, output)

        assert not output.exists()

    def test_decode_failure(self, plan, tmp_path: Path):
        """A file that is not an image raises RasterizationError."""
        source = tmp_path / "broken.png"
        source.write_bytes(b"not an image")
        output = tmp_path / "out.png"

        with pytest.raises(RasterizationError) as exc_info:
            Rasterizer(plan).rasterize(source, output)

        assert exc_info.value.exit_code == 3
        assert not output.exists()

    def test_debug_copy(self, plan, label_png, tmp_path: Path):
        spool = tmp_path / "spool"

        Rasterizer(plan, debug=True, spool_dir=spool).rasterize(label_png, tmp_path / "out.png")

        copies = list(spool.glob("job-*.png"))
        assert len(copies) == 1

    def test_no_spool_dir_without_debug(self, plan, label_png, tmp_path: Path):
        spool = tmp_path / "spool"

        Rasterizer(plan, spool_dir=spool).rasterize(label_png, tmp_path / "out.png")

        assert not spool.exists()


class TestDocumentRasterization:
    def test_text_command(self, tmp_path: Path):
        plan = RasterPlan(96, 320, threshold=60, convert_threshold="60%", sharpen=True)
        args = Rasterizer(plan).convert_args(Path("job.pdf"), tmp_path / "out.png")

        assert args[0] == "convert"
        assert args[args.index("-density") + 1] == "406"
        assert args[args.index("-resize") + 1] == "96x320"
        assert args[args.index("-extent") + 1] == "96x320"
        assert args[args.index("-unsharp") + 1] == "0x1+0.8+0.02"
        assert args[args.index("-threshold") + 1] == "60%"
        assert "-dither" not in args
        assert args[-3:] == ["-type", "bilevel", str(tmp_path / "out.png")]

    def test_photo_command(self, tmp_path: Path):
        plan = RasterPlan(96, 320, threshold=128, dither=True)
        args = Rasterizer(plan).convert_args(Path("job.pdf"), tmp_path / "out.png")

        assert args[args.index("-dither") + 1] == "FloydSteinberg"
        assert args[args.index("-colors") + 1] == "2"
        assert "-threshold" not in args
        assert "-unsharp" not in args

    @patch("niimbridge.raster.subprocess.run")
    def test_convert_success(self, mock_run, plan, tmp_path: Path):
        mock_run.return_value = MagicMock(returncode=0, stderr="")
        output = tmp_path / "out.png"

        result = Rasterizer(plan).rasterize(tmp_path / "job.pdf", output, SourceKind.DOCUMENT)

        assert result == output
        mock_run.assert_called_once()
        assert mock_run.call_args.kwargs["timeout"] == 120

    @patch("niimbridge.raster.subprocess.run")
    def test_convert_nonzero_exit(self, mock_run, plan, tmp_path: Path):
        """A failing convert removes partial output and raises."""
        output = tmp_path / "out.png"
        output.write_bytes(b"partial")
        mock_run.return_value = MagicMock(returncode=1, stderr="no decode delegate")

        with pytest.raises(RasterizationError, match="no decode delegate"):
            Rasterizer(plan).rasterize(tmp_path / "job.pdf", output, SourceKind.DOCUMENT)

        assert not output.exists()

    @patch("niimbridge.raster.subprocess.run", side_effect=FileNotFoundError)
    def test_convert_missing(self, mock_run, plan, tmp_path: Path):
        with pytest.raises(RasterizationError, match="ImageMagick"):
            Rasterizer(plan).rasterize(
                tmp_path / "job.pdf", tmp_path / "out.png", SourceKind.DOCUMENT
            )

    @patch(
        "niimbridge.raster.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="convert", timeout=120),
    )
    def test_convert_timeout(self, mock_run, plan, tmp_path: Path):
        with pytest.raises(RasterizationError, match="timed out"):
            Rasterizer(plan).rasterize(
                tmp_path / "job.pdf", tmp_path / "out.png", SourceKind.DOCUMENT
            )


class TestSaveDebugCopy:
    def test_copy_failure_is_not_raised(self, tmp_path: Path):
        """A failed copy returns None instead of raising."""
        assert save_debug_copy(tmp_path / "missing.png", tmp_path / "spool") is None

    def test_copy(self, raster_png, tmp_path: Path):
        target = save_debug_copy(raster_png, tmp_path / "spool")
        assert target is not None
        assert target.read_bytes() == raster_png.read_bytes()
