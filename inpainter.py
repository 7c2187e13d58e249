"""
Inpainting Watermark - Salin Stripe Berarah + Blur Tepi

Fitur utama:
- Pilih sisi donor (kiri/kanan) berdasarkan variance warna lokal
- Isi persegi dengan satu kolom piksel tepat di samping area (stripe 1px)
- Blur 3x3 berbobot (tengah 2, lainnya 1, /10) di cincin 1px sekitar area
"""

import numpy as np
from typing import Tuple

STRIPE_WIDTH = 6
STRIPE_PAD_Y = 2
BLUR_KERNEL = np.array([[1, 1, 1],
                        [1, 2, 1],
                        [1, 1, 1]], dtype=np.float64)
BLUR_NORM = 10.0


def stripe_variance(image: np.ndarray, x0: int, x1: int, y0: int, y1: int) -> float:
    """
    Variance warna strip [x0..x1] x [y0..y1] (inklusif), rata-rata R,G,B.

    Strip kosong -> +inf supaya sisi itu tidak terpilih.
    """
    if x1 < x0 or y1 < y0:
        return float('inf')

    px = image[y0:y1 + 1, x0:x1 + 1, :3].reshape(-1, 3).astype(np.float64)
    n = len(px)
    if n == 0:
        return float('inf')

    sq_dev = ((px - px.mean(axis=0)) ** 2).sum(axis=0)
    return float(np.mean(sq_dev / max(1, n - 1)))


class RegionInpainter:
    """Hapus area persegi dengan isian dari piksel tetangga."""

    def __init__(self, stripe_width: int = STRIPE_WIDTH, stripe_pad_y: int = STRIPE_PAD_Y):
        self.stripe_width = stripe_width
        self.stripe_pad_y = stripe_pad_y

    def choose_donor(self, image: np.ndarray, rect: Tuple[int, int, int, int]) -> str:
        """Return 'left' atau 'right'. Seri -> kiri."""
        x, y, w, h = rect
        img_h, img_w = image.shape[:2]

        y0 = max(0, y - self.stripe_pad_y)
        y1 = min(img_h - 1, y + h + self.stripe_pad_y)

        left_var = stripe_variance(image, max(0, x - self.stripe_width), x - 1, y0, y1)
        right_var = stripe_variance(image, x + w, min(img_w - 1, x + w + self.stripe_width - 1), y0, y1)

        print(f"[INPAINTER] Stripe variance: left={left_var:.2f} right={right_var:.2f}")
        return 'left' if left_var <= right_var else 'right'

    def inpaint_rect(self, image: np.ndarray, rect: Tuple[int, int, int, int]) -> np.ndarray:
        """
        Timpa area rect (x, y, w, h) langsung pada buffer image (H, W, C>=3).

        Tidak ada penulisan di luar [x-1, x+w+1] x [y-1, y+h+1].
        Returns image yang sama (in-place).
        """
        x, y, w, h = (int(v) for v in rect)
        img_h, img_w = image.shape[:2]

        # potong ke batas gambar
        fx0, fy0 = max(0, x), max(0, y)
        fx1, fy1 = min(img_w, x + w), min(img_h, y + h)
        if fx1 <= fx0 or fy1 <= fy0:
            print(f"[INPAINTER] WARNING: Empty rect {rect}, nothing to do")
            return image

        print(f"[INPAINTER] Inpainting rect x={x} y={y} w={w} h={h} on {img_w}x{img_h}")

        # LANGKAH 1-2: pilih sisi donor
        side = self.choose_donor(image, (x, y, w, h))
        src_x = max(0, x - 1) if side == 'left' else min(img_w - 1, x + w)

        # LANGKAH 3: salin kolom donor ke seluruh area (RGB saja, alpha tetap)
        donor = image[fy0:fy1, src_x, :3].copy()
        image[fy0:fy1, fx0:fx1, :3] = donor[:, None, :]

        # LANGKAH 4: blur cincin di sekitar area dari snapshot setelah pengisian
        self._blur_ring(image, x, y, w, h)

        print(f"[INPAINTER] ✅ Filled from {side} column x={src_x}")
        return image

    def _blur_ring(self, image: np.ndarray, x: int, y: int, w: int, h: int):
        img_h, img_w = image.shape[:2]
        bx0, by0 = max(1, x - 1), max(1, y - 1)
        bx1, by1 = min(img_w - 2, x + w + 1), min(img_h - 2, y + h + 1)
        if bx1 < bx0 or by1 < by0:
            return

        snapshot = image.astype(np.float64)
        acc = np.zeros((by1 - by0 + 1, bx1 - bx0 + 1, image.shape[2]), dtype=np.float64)

        for dy in (-1, 0, 1):
            for dx in (-1, 0, 1):
                k = BLUR_KERNEL[dy + 1, dx + 1]
                acc += k * snapshot[by0 + dy:by1 + dy + 1, bx0 + dx:bx1 + dx + 1]

        blurred = np.clip(np.rint(acc / BLUR_NORM), 0, 255)
        image[by0:by1 + 1, bx0:bx1 + 1] = blurred.astype(image.dtype)
