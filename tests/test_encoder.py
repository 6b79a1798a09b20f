import io
import unittest

import cv2
import numpy as np
from PIL import Image

from unmark.core.encoder import (
    ImageEncoder,
    OutputFormat,
    OutputSpec,
    composite_on_white,
    png_color_budget,
)
from unmark.core.errors import EncodeError
from .helpers import create_background


def _decode(data: bytes) -> np.ndarray:
    return cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)


class TestOutputSpec(unittest.TestCase):
    def test_quality_is_clamped(self) -> None:
        self.assertEqual(OutputSpec(OutputFormat.PNG, 1.7).quality, 1.0)
        self.assertEqual(OutputSpec(OutputFormat.PNG, -0.2).quality, 0.0)
        self.assertEqual(OutputSpec(OutputFormat.PNG, float("nan")).quality, 1.0)

    def test_format_accepts_strings(self) -> None:
        spec = OutputSpec("WEBP", 0.8)
        self.assertIs(spec.format, OutputFormat.WEBP)
        self.assertEqual(spec.extension, "webp")
        self.assertEqual(OutputSpec("jpeg").extension, "jpg")

    def test_matching_input_type(self) -> None:
        self.assertIs(OutputSpec.matching("image/jpeg").format, OutputFormat.JPEG)
        self.assertIs(OutputSpec.matching("image/webp").format, OutputFormat.WEBP)
        self.assertIs(OutputSpec.matching("image/png").format, OutputFormat.PNG)
        self.assertIs(OutputSpec.matching(None).format, OutputFormat.PNG)

    def test_from_config_prefers_explicit_format(self) -> None:
        spec = OutputSpec.from_config({"output": {"format": "jpeg", "quality": 0.7}}, "image/png")
        self.assertEqual((spec.format, spec.quality), (OutputFormat.JPEG, 0.7))
        spec = OutputSpec.from_config({"output": {"format": None}}, "image/webp")
        self.assertIs(spec.format, OutputFormat.WEBP)

    def test_color_budget(self) -> None:
        self.assertEqual(png_color_budget(1.0), 0)
        self.assertEqual(png_color_budget(0.999), 0)
        self.assertEqual(png_color_budget(0.95), 256)
        self.assertEqual(png_color_budget(0.85), 256)
        self.assertEqual(png_color_budget(0.7), 192)


class TestImageEncoder(unittest.TestCase):
    def setUp(self) -> None:
        self.raster = create_background(90, 70)
        self.raster[:10, :10, 3] = 0

    def test_lossless_png_round_trips_exactly(self) -> None:
        encoded = ImageEncoder().encode(self.raster, OutputSpec(OutputFormat.PNG, 1.0))
        self.assertEqual(encoded.extension, "png")
        self.assertEqual(encoded.mime_type, "image/png")
        self.assertFalse(encoded.degraded)
        np.testing.assert_array_equal(_decode(encoded.data), self.raster)

    def test_quantized_png_keeps_dimensions_and_alpha(self) -> None:
        encoded = ImageEncoder().encode(self.raster, OutputSpec(OutputFormat.PNG, 0.5))
        self.assertEqual(encoded.colors, 192)
        self.assertFalse(encoded.degraded)
        with Image.open(io.BytesIO(encoded.data)) as image:
            self.assertEqual(image.format, "PNG")
            self.assertEqual(image.mode, "P")
            self.assertEqual(image.size, (90, 70))
            rgba = np.asarray(image.convert("RGBA"))
        self.assertLess(int(rgba[0, 0, 3]), 128)
        self.assertGreater(int(rgba[-1, -1, 3]), 128)

    def test_missing_quantizer_falls_back_to_lossless(self) -> None:
        encoded = ImageEncoder(quantizer=None).encode(self.raster, OutputSpec(OutputFormat.PNG, 0.9))
        self.assertTrue(encoded.degraded)
        self.assertIn("lossless", encoded.notice)
        np.testing.assert_array_equal(_decode(encoded.data), self.raster)

    def test_failing_quantizer_falls_back_to_lossless(self) -> None:
        def broken(rgba: np.ndarray, colors: int) -> bytes:
            raise RuntimeError("quantizer exploded")

        encoded = ImageEncoder(quantizer=broken).encode(self.raster, OutputSpec(OutputFormat.PNG, 0.5))
        self.assertTrue(encoded.degraded)
        self.assertEqual(_decode(encoded.data).shape, self.raster.shape)

    def test_empty_quantizer_output_falls_back(self) -> None:
        encoded = ImageEncoder(quantizer=lambda rgba, colors: b"").encode(
            self.raster, OutputSpec(OutputFormat.PNG, 0.5)
        )
        self.assertTrue(encoded.degraded)

    def test_jpeg_flattens_transparency_onto_white(self) -> None:
        encoded = ImageEncoder().encode(self.raster, OutputSpec(OutputFormat.JPEG, 0.92))
        self.assertEqual(encoded.extension, "jpg")
        decoded = _decode(encoded.data)
        self.assertEqual(decoded.shape, (70, 90, 3))
        self.assertGreater(int(decoded[2:8, 2:8].min()), 230)

    def test_webp_encodes_at_requested_quality(self) -> None:
        low = ImageEncoder().encode(self.raster, OutputSpec(OutputFormat.WEBP, 0.1))
        high = ImageEncoder().encode(self.raster, OutputSpec(OutputFormat.WEBP, 1.0))
        self.assertEqual(low.mime_type, "image/webp")
        self.assertEqual(_decode(low.data).shape[:2], (70, 90))
        self.assertLess(len(low.data), len(high.data))

    def test_composite_on_white(self) -> None:
        pixel = np.array([[[0, 100, 200, 128]]], dtype=np.uint8)
        flattened = composite_on_white(pixel)
        self.assertEqual(flattened.shape, (1, 1, 3))
        np.testing.assert_array_equal(flattened[0, 0], [127, 177, 227])

    def test_empty_raster_is_an_encode_error(self) -> None:
        with self.assertRaises(EncodeError):
            ImageEncoder().encode(np.zeros((0, 0, 4), dtype=np.uint8), OutputSpec())


if __name__ == "__main__":
    unittest.main()
