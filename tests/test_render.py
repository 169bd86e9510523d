import os
import tempfile
import unittest

import numpy as np

from yolo_live.render import Canvas, color_for_class_id, draw_detections
from yolo_live.types import Detection


class TestRender(unittest.TestCase):
    def test_palette_is_deterministic(self) -> None:
        self.assertEqual(color_for_class_id(0), (56, 56, 255))
        self.assertEqual(color_for_class_id(None), (0, 255, 255))
        self.assertEqual(color_for_class_id(1234), color_for_class_id(1234))

    def test_draw_in_place_with_scale(self) -> None:
        img = np.zeros((100, 100, 3), dtype=np.uint8)
        det = Detection(x1=20, y1=20, x2=80, y2=80, score=0.9, class_id=0, label="person")
        out = draw_detections(img, [det], scale=(0.5, 0.5), show_score=False)
        self.assertIs(out, img)
        # Box edge lands at the scaled coordinate, not the source one.
        self.assertTrue(np.any(img[25:41, 10] != 0))
        self.assertTrue(np.all(img[60:, 60:] == 0))

    def test_canvas_render_scales_frame(self) -> None:
        canvas = Canvas(64, show_score=True)
        self.assertEqual(canvas.size, (64, 64))
        frame = np.full((32, 128, 3), 90, dtype=np.uint8)
        canvas.render(frame, [Detection(x1=0, y1=0, x2=64, y2=16, score=0.5, class_id=2, label="car")])
        self.assertEqual(canvas.render_count, 1)
        self.assertEqual(canvas.image.shape, (64, 64, 3))
        self.assertEqual(int(canvas.image[50, 50, 0]), 90)

        canvas.clear()
        self.assertFalse(canvas.image.any())
        self.assertEqual(canvas.render_count, 1)

    def test_resize_and_save(self) -> None:
        canvas = Canvas(32)
        canvas.resize(48, 40)
        self.assertEqual(canvas.size, (48, 40))
        self.assertEqual(canvas.snapshot().shape, (40, 48, 3))
        with self.assertRaises(ValueError):
            canvas.resize(0, 10)
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "canvas.png")
            canvas.save(path)
            self.assertTrue(os.path.exists(path))


if __name__ == "__main__":
    unittest.main()
