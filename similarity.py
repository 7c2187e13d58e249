"""
Skor kemiripan window sumber vs template

- MAD (mean absolute difference) dengan early abort per baris
- NCC (normalized cross-correlation), tidak peka offset kecerahan

Semua buffer grayscale berupa array 1D row-major + lebarnya.
"""

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from typing import Sequence

NCC_EPSILON = 1e-6


def mean_to_score(mean: float) -> float:
    return 1 - mean / 255


def _as_2d(buf: np.ndarray, width: int) -> np.ndarray:
    return np.asarray(buf, dtype=np.float32).reshape(-1, width)


def _mad_scores(windows: np.ndarray, tpl: np.ndarray, abort_if_below: float) -> np.ndarray:
    """
    windows: (n, rows, cols) sampel sumber, tpl: (rows, cols) sampel template.

    Mean berjalan dihitung per baris; skor diambil dari baris pertama yang
    melewati batas abort, atau dari baris terakhir jika tidak ada.
    """
    n = windows.shape[0]
    rows, cols = tpl.shape
    if rows == 0:
        return np.ones(n)

    row_sums = np.abs(windows.astype(np.float64) - tpl).sum(axis=2)
    counts = np.maximum(1, np.arange(1, rows + 1) * cols)
    means = np.cumsum(row_sums, axis=1) / counts

    max_mean = (1 - abort_if_below) * 255
    over = means > max_mean
    stop_row = np.where(over.any(axis=1), over.argmax(axis=1), rows - 1)

    return 1 - means[np.arange(n), stop_row] / 255


def mad_row_scores(src: np.ndarray, src_w: int, xs: Sequence[int], y: int,
                   tpl: np.ndarray, tpl_w: int, tpl_h: int,
                   step: int = 2, abort_if_below: float = 0.85) -> np.ndarray:
    """Skor MAD untuk banyak posisi x pada baris y sekaligus (gate kasar)."""
    xs = np.asarray(xs, dtype=np.int64)
    if xs.size == 0:
        return np.zeros(0)

    rows = _as_2d(src, src_w)[y:y + tpl_h:step]
    # (rows, posisi, tpl_w) -> (posisi, rows, cols)
    windows = sliding_window_view(rows, tpl_w, axis=1)[:, xs, ::step].transpose(1, 0, 2)
    tpl_s = _as_2d(tpl, tpl_w)[::step, ::step]

    return _mad_scores(windows, tpl_s, abort_if_below)


def similarity_mad(src: np.ndarray, src_w: int, x: int, y: int,
                   tpl: np.ndarray, tpl_w: int, tpl_h: int,
                   step: int = 2, abort_if_below: float = 0.85) -> float:
    """Kemiripan MAD dalam [0,1]; 1 berarti identik."""
    return float(mad_row_scores(src, src_w, [x], y, tpl, tpl_w, tpl_h, step, abort_if_below)[0])


def similarity_ncc(src: np.ndarray, src_w: int, x: int, y: int,
                   tpl: np.ndarray, tpl_w: int, tpl_h: int,
                   step: int = 2) -> float:
    """Korelasi Pearson yang dipetakan dari [-1,1] ke [0,1]."""
    window = _as_2d(src, src_w)[y:y + tpl_h:step, x:x + tpl_w:step]
    t = _as_2d(tpl, tpl_w)[::step, ::step]

    s = window.astype(np.float64).ravel()
    t = t.astype(np.float64).ravel()
    n = s.size
    if n == 0:
        return 0.0

    ds = s - s.mean()
    dt = t - t.mean()
    # variance uniform = 0, jadi diberi batas bawah
    var_s = max(NCC_EPSILON, float(np.dot(ds, ds)))
    var_t = max(NCC_EPSILON, float(np.dot(dt, dt)))
    cov = float(np.dot(ds, dt))

    corr = cov / np.sqrt(var_s * var_t)
    return float(min(1.0, max(0.0, (corr + 1) / 2)))
