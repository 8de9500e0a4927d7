"""Tests for the viewfinder command line."""

import argparse
import json

import cv2
import numpy as np
import pytest

from viewfinder import __version__
from viewfinder.cli import EXIT_NOT_SAVED, EXIT_OK, EXIT_USAGE, _parse_grid, _parse_range, main
from viewfinder.devices.exposure import ExposureRange


@pytest.fixture
def quadrant_png(tmp_path):
    """64x36 PNG whose top-left quadrant is white."""
    luma = np.zeros((36, 64), dtype=np.uint8)
    luma[:18, :32] = 255
    path = tmp_path / "quadrant.png"
    cv2.imwrite(str(path), luma)
    return path


class TestParsers:
    """Tests for argument type parsers."""

    def test_parse_grid(self):
        """Verifies WxH parsing."""
        assert _parse_grid("64x36") == (64, 36)
        assert _parse_grid("8X4") == (8, 4)

    @pytest.mark.parametrize("text", ["64", "0x3", "ax2", "2x2x2"])
    def test_parse_grid_invalid(self, text):
        """Verifies malformed grids are argument errors."""
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_grid(text)

    def test_parse_range(self):
        """Verifies LO:HI and none."""
        assert _parse_range("-1:1") == ExposureRange(-1, 1)
        assert _parse_range("none") is None


class TestAnalyzeCommand:
    """Tests for ``viewfinder analyze``."""

    def test_summary(self, quadrant_png, capsys):
        """Verifies the text summary reports zebra cells."""
        code = main(["analyze", str(quadrant_png), "--grid", "2x2"])

        out = capsys.readouterr().out
        assert code == EXIT_OK
        assert "64x36" in out
        assert "1/4 cells" in out

    def test_json(self, quadrant_png, capsys):
        """Verifies JSON output carries histogram and grids.

        Arrangement:
        1. PNG with one white quadrant.

        Action:
        Runs analyze with a 2x2 grid and --json.

        Assertion Strategy:
        - Histogram sums to the pixel count with a quarter at 255.
        - Only the top-left zebra cell is flagged.
        """
        code = main(["analyze", str(quadrant_png), "--grid", "2x2", "--json"])

        data = json.loads(capsys.readouterr().out)
        assert code == EXIT_OK
        assert sum(data["histogram"]) == 64 * 36
        assert data["histogram"][255] == 32 * 18
        assert data["zebra"]["cells"] == [[1, 0], [0, 0]]
        assert data["zebra"]["flagged"] == 1

    def test_missing_file(self, tmp_path, capsys):
        """Verifies an unreadable image is a usage error."""
        code = main(["analyze", str(tmp_path / "missing.png")])
        assert code == EXIT_USAGE
        assert "cannot decode" in capsys.readouterr().err

    def test_bad_zebra_threshold(self, quadrant_png, capsys):
        """Verifies an out-of-range threshold is a usage error."""
        assert main(["analyze", str(quadrant_png), "--zebra", "300"]) == EXIT_USAGE

    def test_bad_grid_exits(self, quadrant_png, capsys):
        """Verifies argparse rejects a malformed grid."""
        with pytest.raises(SystemExit) as excinfo:
            main(["analyze", str(quadrant_png), "--grid", "0x0"])
        assert excinfo.value.code == 2


class TestCaptureCommand:
    """Tests for ``viewfinder capture``."""

    def test_hdr_saved(self, tmp_path, capsys):
        """Verifies a default HDR capture writes a JPEG.

        Arrangement:
        1. Output directory under tmp_path.

        Action:
        Runs capture with --json.

        Assertion Strategy:
        - Exit code 0 and status saved.
        - File exists with an HDR_ name.
        - Exposure history is the bracket plus restore.
        - Pipeline stats count one saved capture.
        """
        out_dir = tmp_path / "out"
        code = main(["capture", "--output-dir", str(out_dir), "--json"])

        data = json.loads(capsys.readouterr().out)
        assert code == EXIT_OK
        assert data["status"] == "saved"
        assert data["filename"].startswith("HDR_")
        assert (out_dir / data["filename"]).read_bytes()[:2] == b"\xff\xd8"
        assert data["exposure_history"] == [-2, 0, 2, 0]
        assert data["stats"]["capture_outcomes"] == {"saved": 1}

    def test_narrow_range_with_failure(self, tmp_path, capsys):
        """Verifies clamping and a dropped shot with a [-1, 1] device."""
        code = main(
            [
                "capture",
                "--output-dir", str(tmp_path),
                "--range=-1:1",
                "--fail-index", "1",
                "--json",
            ]
        )

        data = json.loads(capsys.readouterr().out)
        assert code == EXIT_OK
        assert data["shots_captured"] == 2
        assert data["exposure_history"] == [-1, 0, 1, 0]

    def test_all_shots_fail(self, tmp_path, capsys):
        """Verifies exit code 1 when nothing could be saved."""
        code = main(
            [
                "capture",
                "--output-dir", str(tmp_path),
                "--range=-1:1",
                "--fail-index", "-1",
                "--fail-index", "0",
                "--fail-index", "1",
            ]
        )

        out = capsys.readouterr().out
        assert code == EXIT_NOT_SAVED
        assert "no_images" in out
        assert list(tmp_path.iterdir()) == []

    def test_no_exposure_compensation(self, tmp_path, capsys):
        """Verifies a device without range still captures at current EV."""
        code = main(["capture", "--output-dir", str(tmp_path), "--range", "none", "--json"])

        data = json.loads(capsys.readouterr().out)
        assert code == EXIT_OK
        assert data["exposure_history"] == []
        assert data["shots_captured"] == 3

    def test_unimplemented_mode(self, tmp_path, capsys):
        """Verifies night mode reports not_implemented with exit code 1."""
        code = main(["capture", "--mode", "night", "--output-dir", str(tmp_path)])

        assert code == EXIT_NOT_SAVED
        assert "not_implemented" in capsys.readouterr().out

    def test_single_mode(self, tmp_path, capsys):
        """Verifies single mode saves an IMG_ file."""
        code = main(["capture", "--mode", "single", "--output-dir", str(tmp_path), "--json"])

        data = json.loads(capsys.readouterr().out)
        assert code == EXIT_OK
        assert data["filename"].startswith("IMG_")


class TestGlobalOptions:
    """Tests for top-level options."""

    def test_version(self, capsys):
        """Verifies --version prints the package version."""
        with pytest.raises(SystemExit) as excinfo:
            main(["--version"])
        assert excinfo.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_command_required(self, capsys):
        """Verifies a subcommand is required."""
        with pytest.raises(SystemExit) as excinfo:
            main([])
        assert excinfo.value.code == 2

    def test_log_json_to_stderr(self, tmp_path, capsys):
        """Verifies --log-json writes JSON log lines to stderr."""
        main(
            [
                "--log-level", "info",
                "--log-json",
                "capture", "--mode", "night", "--output-dir", str(tmp_path),
            ]
        )

        lines = [line for line in capsys.readouterr().err.splitlines() if line.startswith("{")]
        records = [json.loads(line) for line in lines]
        assert any(r["message"] == "Capture mode not implemented" for r in records)
