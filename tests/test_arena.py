import unittest

import numpy as np

from yolo_live.arena import TensorArena


class TestTensorArena(unittest.TestCase):
    def test_release_on_exit(self) -> None:
        baseline = TensorArena.outstanding()
        with TensorArena() as arena:
            arena.track(np.zeros(4))
            arena.empty((2, 2))
            self.assertEqual(len(arena), 2)
            self.assertEqual(TensorArena.outstanding(), baseline + 2)
        self.assertTrue(arena.closed)
        self.assertEqual(TensorArena.outstanding(), baseline)

    def test_release_on_exception(self) -> None:
        baseline = TensorArena.outstanding()
        with self.assertRaises(RuntimeError):
            with TensorArena() as arena:
                arena.track(np.zeros(4))
                raise RuntimeError("boom")
        self.assertEqual(TensorArena.outstanding(), baseline)

    def test_release_hook_called(self) -> None:
        released = []
        buf = np.zeros(3)
        with TensorArena() as arena:
            arena.track(buf, released.append)
        self.assertEqual(len(released), 1)
        self.assertIs(released[0], buf)

    def test_transfer_moves_ownership(self) -> None:
        baseline = TensorArena.outstanding()
        keep = TensorArena("cache")
        buf = np.zeros(3)
        with TensorArena() as arena:
            arena.track(buf)
            arena.transfer(buf, keep)
            self.assertEqual(len(arena), 0)
        self.assertEqual(TensorArena.outstanding(), baseline + 1)
        keep.release()
        self.assertEqual(TensorArena.outstanding(), baseline)

    def test_transfer_unknown_tensor(self) -> None:
        with TensorArena() as arena:
            with self.assertRaises(KeyError):
                arena.transfer(np.zeros(1), TensorArena())

    def test_track_after_release_rejected(self) -> None:
        arena = TensorArena()
        arena.release()
        arena.release()
        with self.assertRaises(RuntimeError):
            arena.track(np.zeros(1))


if __name__ == "__main__":
    unittest.main()
