import io
import logging
import tempfile
import unittest
import zipfile
from pathlib import Path
from typing import List

import cv2
import numpy as np

from unmark.cli import main as cli_main
from unmark.config import DEFAULT_CONFIG_PATH
from .helpers import create_watermarked_sample, write_reference_assets


class TestCLI(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.tmp = Path(self.temp_dir.name)
        self.asset_dir = write_reference_assets(self.tmp / "assets")
        self.output_dir = self.tmp / "out"

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def run_cli(self, args: List[str]) -> int:
        exit_code = cli_main.main(["--config", str(DEFAULT_CONFIG_PATH), "--assets", str(self.asset_dir), *args])
        logging.shutdown()
        logging.getLogger().handlers.clear()
        return exit_code

    def write_inputs(self, count: int, suffix: str = ".png") -> List[str]:
        paths = []
        for index in range(count):
            _, watermarked = create_watermarked_sample()
            path = self.tmp / f"input {index}{suffix}"
            cv2.imwrite(str(path), watermarked[:, :, :3] if suffix == ".jpg" else watermarked)
            paths.append(str(path))
        return paths

    def test_process_command_writes_results_and_archive(self) -> None:
        inputs = self.write_inputs(2)
        log_file = self.tmp / "cli.log"

        exit_code = self.run_cli(
            ["--log-file", str(log_file), "process", "-i", *inputs, "-o", str(self.output_dir), "--zip"]
        )

        self.assertEqual(exit_code, 0)
        for index in range(2):
            self.assertTrue((self.output_dir / f"unwatermarked_input_{index}.png").exists())
        archives = list(self.output_dir.glob("unwatermarked_*.zip"))
        self.assertEqual(len(archives), 1)
        with zipfile.ZipFile(io.BytesIO(archives[0].read_bytes())) as bundle:
            self.assertEqual(sorted(bundle.namelist()), ["unwatermarked_input_0.png", "unwatermarked_input_1.png"])
        self.assertTrue(log_file.exists(), "Log file override was not respected.")

    def test_format_defaults_to_first_input_type(self) -> None:
        inputs = self.write_inputs(1, suffix=".jpg")
        exit_code = self.run_cli(["process", "-i", *inputs, "-o", str(self.output_dir)])
        self.assertEqual(exit_code, 0)
        self.assertTrue((self.output_dir / "unwatermarked_input_0.jpg").exists())

    def test_reprocess_options_rerun_batch(self) -> None:
        inputs = self.write_inputs(2)
        exit_code = self.run_cli(
            [
                "process",
                "-i",
                *inputs,
                "-o",
                str(self.output_dir),
                "--format",
                "png",
                "--reprocess-format",
                "webp",
                "--reprocess-quality",
                "0.8",
            ]
        )
        self.assertEqual(exit_code, 0)
        outputs = sorted(path.name for path in self.output_dir.iterdir())
        self.assertEqual(outputs, ["unwatermarked_input_0.webp", "unwatermarked_input_1.webp"])
        decoded = cv2.imread(str(self.output_dir / outputs[0]), cv2.IMREAD_UNCHANGED)
        self.assertEqual(decoded.shape[:2], (120, 160))

    def test_corrupt_input_reports_failure(self) -> None:
        inputs = self.write_inputs(1)
        broken = self.tmp / "broken.png"
        broken.write_bytes(b"not an image")

        exit_code = self.run_cli(["process", "-i", *inputs, str(broken), "-o", str(self.output_dir)])

        self.assertEqual(exit_code, 1)
        self.assertEqual([p.name for p in self.output_dir.iterdir()], ["unwatermarked_input_0.png"])

    def test_too_many_inputs_are_rejected(self) -> None:
        inputs = self.write_inputs(11)
        exit_code = self.run_cli(["process", "-i", *inputs, "-o", str(self.output_dir)])
        self.assertEqual(exit_code, 2)
        self.assertFalse(self.output_dir.exists())

    def test_nonexistent_input_is_rejected(self) -> None:
        inputs = self.write_inputs(1)
        missing = str(self.tmp / "nope.png")
        exit_code = self.run_cli(["process", "-i", *inputs, missing, "-o", str(self.output_dir)])
        self.assertEqual(exit_code, 2)
        self.assertFalse(self.output_dir.exists())

    def test_missing_assets_are_rejected(self) -> None:
        for path in self.asset_dir.iterdir():
            path.unlink()
        inputs = self.write_inputs(1)
        exit_code = self.run_cli(["process", "-i", *inputs, "-o", str(self.output_dir)])
        self.assertEqual(exit_code, 2)

    def test_quality_out_of_range_is_a_usage_error(self) -> None:
        with self.assertRaises(SystemExit):
            cli_main.main(["process", "-i", "x.png", "-o", "out", "--quality", "1.5"])


if __name__ == "__main__":
    unittest.main()
