import unittest

import numpy as np

from inpainter import RegionInpainter, stripe_variance


def noisy(height, width, seed=0):
    img = np.random.default_rng(seed).integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    img[:, :, 3] = 255
    return img


class TestStripeVariance(unittest.TestCase):
    def test_uniform_is_zero(self):
        img = np.full((10, 10, 4), 77, dtype=np.uint8)
        self.assertEqual(stripe_variance(img, 0, 5, 0, 9), 0.0)

    def test_empty_strip_is_infinite(self):
        img = np.zeros((10, 10, 4), dtype=np.uint8)
        self.assertEqual(stripe_variance(img, 0, -1, 0, 9), float('inf'))

    def test_sample_variance(self):
        img = np.zeros((1, 2, 4), dtype=np.uint8)
        img[0, 1, :3] = 2
        # values {0, 2}: mean 1, sum of squares 2, n - 1 = 1
        self.assertEqual(stripe_variance(img, 0, 1, 0, 0), 2.0)

    def test_single_pixel(self):
        img = np.full((3, 3, 4), 9, dtype=np.uint8)
        self.assertEqual(stripe_variance(img, 1, 1, 1, 1), 0.0)


class TestRegionInpainter(unittest.TestCase):
    def setUp(self):
        self.inpainter = RegionInpainter()

    def test_no_writes_outside_ring(self):
        img = noisy(30, 40, seed=1)
        before = img.copy()
        x, y, w, h = 10, 8, 12, 6
        self.inpainter.inpaint_rect(img, (x, y, w, h))

        mask = np.ones(img.shape[:2], dtype=bool)
        mask[y - 1:y + h + 2, x - 1:x + w + 2] = False
        np.testing.assert_array_equal(img[mask], before[mask])

    def test_uniform_left_side_wins(self):
        color = np.array([10, 200, 50, 255], dtype=np.uint8)
        img = noisy(20, 30, seed=2)
        img[:, :10] = color

        self.inpainter.inpaint_rect(img, (10, 5, 6, 10))

        # interior cells only see filled neighbours, so the blur keeps the colour
        np.testing.assert_array_equal(img[6:14, 11:15], np.broadcast_to(color, (8, 4, 4)))
        np.testing.assert_array_equal(img[12, 12], color)
        self.assertTrue(np.all(img[:, :, 3] == 255))

    def test_tie_fills_from_left(self):
        img = np.zeros((20, 30, 4), dtype=np.uint8)
        img[:, :10] = (100, 0, 0, 255)
        img[:, 16:] = (0, 0, 100, 255)
        img[:, 10:16] = (0, 255, 0, 255)

        self.assertEqual(self.inpainter.choose_donor(img, (10, 5, 6, 10)), 'left')
        self.inpainter.inpaint_rect(img, (10, 5, 6, 10))
        np.testing.assert_array_equal(img[9, 12], (100, 0, 0, 255))

    def test_left_edge_uses_right_donor(self):
        img = noisy(20, 30, seed=3)
        self.assertEqual(self.inpainter.choose_donor(img, (0, 5, 6, 6)), 'right')

        img[:, 6] = (1, 2, 3, 255)
        self.inpainter.inpaint_rect(img, (0, 5, 6, 6))
        # column 0 is outside the blur ring
        np.testing.assert_array_equal(img[7, 0], (1, 2, 3, 255))

    def test_right_edge_uses_left_donor(self):
        img = noisy(20, 30, seed=4)
        self.assertEqual(self.inpainter.choose_donor(img, (24, 5, 6, 6)), 'left')

    def test_blur_weights(self):
        img = np.zeros((20, 20, 4), dtype=np.uint8)
        img[:, :5, :3] = 100
        self.inpainter.inpaint_rect(img, (5, 5, 4, 4))

        # filled block is 100, so (row 6, col 9) sees three 100s in column 8
        np.testing.assert_array_equal(img[6, 9], (30, 30, 30, 0))
        np.testing.assert_array_equal(img[6, 6], (100, 100, 100, 0))

    def test_alpha_not_filled(self):
        img = np.zeros((20, 30, 4), dtype=np.uint8)
        img[:, :, :3] = 50
        img[:, :, 3] = 255
        img[5:15, 10:16, 3] = 0
        self.inpainter.inpaint_rect(img, (10, 5, 6, 10))
        self.assertEqual(img[10, 13, 3], 0)

    def test_degenerate_rect_is_noop(self):
        img = noisy(20, 30, seed=5)
        before = img.copy()
        self.inpainter.inpaint_rect(img, (10, 5, 0, 10))
        self.inpainter.inpaint_rect(img, (10, 5, 6, 0))
        self.inpainter.inpaint_rect(img, (100, 100, 6, 6))
        np.testing.assert_array_equal(img, before)

    def test_returns_same_buffer(self):
        img = noisy(20, 30, seed=6)
        self.assertIs(self.inpainter.inpaint_rect(img, (10, 5, 6, 6)), img)

    def test_rect_clipped_to_image(self):
        img = noisy(20, 30, seed=7)
        before = img.copy()
        self.inpainter.inpaint_rect(img, (25, 15, 20, 20))
        np.testing.assert_array_equal(img[:13, :23], before[:13, :23])
        self.assertEqual(img.shape, before.shape)


if __name__ == '__main__':
    unittest.main()
