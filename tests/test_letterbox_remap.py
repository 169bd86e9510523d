import unittest

import numpy as np

from yolo_live.letterbox import letterbox, to_blob
from yolo_live.postprocess import canvas_ratio, remap_boxes


class TestLetterbox(unittest.TestCase):
    def test_landscape_is_padded_top_and_bottom(self) -> None:
        img = np.full((100, 200, 3), 255, dtype=np.uint8)
        padded, t = letterbox(img, size=64)
        self.assertEqual(padded.shape, (64, 64, 3))
        self.assertAlmostEqual(t.scale, 0.32)
        self.assertEqual((t.pad_x, t.pad_y), (0.0, 16.0))
        self.assertEqual(t.frame_size, (200, 100))
        self.assertEqual(t.input_size, (64, 64))
        # Padding rows carry the neutral gray, image rows the original content.
        self.assertTrue(np.all(padded[:16] == 114))
        self.assertTrue(np.all(padded[48:] == 114))
        self.assertTrue(np.all(padded[16:48] == 255))

    def test_portrait_is_padded_left_and_right(self) -> None:
        img = np.zeros((300, 100, 3), dtype=np.uint8)
        padded, t = letterbox(img, size=60, color=(0, 0, 0))
        self.assertEqual(padded.shape, (60, 60, 3))
        self.assertEqual((t.pad_x, t.pad_y), (20.0, 0.0))

    def test_odd_padding_puts_extra_pixel_right(self) -> None:
        img = np.zeros((64, 63, 3), dtype=np.uint8)
        padded, t = letterbox(img, size=64)
        self.assertEqual(padded.shape, (64, 64, 3))
        self.assertEqual(t.pad_x, 0.0)
        self.assertTrue(np.all(padded[:, 63] == 114))

    def test_one_pixel_strip(self) -> None:
        img = np.zeros((1, 900, 3), dtype=np.uint8)
        padded, t = letterbox(img, size=64)
        self.assertEqual(padded.shape, (64, 64, 3))
        self.assertEqual(t.frame_size, (900, 1))

    def test_zero_area_frame_rejected(self) -> None:
        with self.assertRaises(ValueError):
            letterbox(np.zeros((0, 10, 3), dtype=np.uint8), size=64)

    def test_blob_layouts(self) -> None:
        padded = np.zeros((32, 32, 3), dtype=np.uint8)
        padded[..., 2] = 255  # red in BGR
        nchw = to_blob(padded)
        nhwc = to_blob(padded, channels_last=True)
        self.assertEqual(nchw.shape, (1, 3, 32, 32))
        self.assertEqual(nhwc.shape, (1, 32, 32, 3))
        self.assertEqual(nchw.dtype, np.float32)
        # RGB order: channel 0 is red.
        self.assertTrue(np.all(nchw[0, 0] == 1.0))
        self.assertTrue(np.all(nhwc[0, ..., 0] == 1.0))


class TestRemap(unittest.TestCase):
    def test_inverse_recovers_frame_coordinates(self) -> None:
        img = np.zeros((100, 200, 3), dtype=np.uint8)
        _, t = letterbox(img, size=64)
        frame_box = np.array([[20, 10, 100, 50]], dtype=np.float32)
        model_box = frame_box * t.scale
        model_box[:, [0, 2]] += t.pad_x
        model_box[:, [1, 3]] += t.pad_y
        back = remap_boxes(model_box, t)
        self.assertTrue(np.allclose(back, frame_box, atol=1e-3))

    def test_boxes_stay_inside_frame_for_any_aspect(self) -> None:
        rng = np.random.default_rng(99)
        size = 64
        for w, h in [(1, 1), (1, 500), (500, 1), (2, 3), (1920, 1080), (640, 640), (37, 911)]:
            _, t = letterbox(np.zeros((h, w, 3), dtype=np.uint8), size=size)
            xy1 = rng.uniform(0, size, size=(50, 2))
            xy2 = np.minimum(xy1 + rng.uniform(0, size, size=(50, 2)), size)
            boxes = np.concatenate([xy1, xy2], axis=1).astype(np.float32)
            out = remap_boxes(boxes, t)
            self.assertTrue(np.all(out[:, [0, 2]] >= 0) and np.all(out[:, [0, 2]] <= w), (w, h))
            self.assertTrue(np.all(out[:, [1, 3]] >= 0) and np.all(out[:, [1, 3]] <= h), (w, h))

    def test_remap_does_not_modify_input(self) -> None:
        _, t = letterbox(np.zeros((100, 200, 3), dtype=np.uint8), size=64)
        boxes = np.array([[0, 20, 10, 30]], dtype=np.float32)
        remap_boxes(boxes, t)
        self.assertTrue(np.array_equal(boxes, [[0, 20, 10, 30]]))

    def test_canvas_ratio(self) -> None:
        self.assertEqual(canvas_ratio((1280, 720), (640, 640)), (0.5, 640 / 720))


if __name__ == "__main__":
    unittest.main()
