"""
Utilitas citra untuk deteksi watermark

- Konversi RGBA -> grayscale (bobot 0.299/0.587/0.114) dan inversinya
- Salinan kerja (working copy) dengan lebar terbatas supaya biaya pencarian konstan
- Template yang bisa diskalakan lewat rasterisasi (OpenCV) atau nearest-neighbor (numpy saja)
"""

import io
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
from PIL import Image

from errors import UnsupportedEnvironmentError

try:
    import cv2
    RASTER_AVAILABLE = True
except ImportError:
    cv2 = None
    RASTER_AVAILABLE = False
    print("[IMAGING] opencv-python not found, raster path disabled. pip install opencv-python")


ImageRef = Union[str, Path, bytes, np.ndarray]

MAX_WORKING_WIDTH = 720


def require_raster():
    if not RASTER_AVAILABLE:
        raise UnsupportedEnvironmentError("Rasterization not supported (opencv-python missing)")


def round_half_up(value: float) -> int:
    """Pembulatan .5 ke atas, bukan banker's rounding bawaan Python."""
    return int(np.floor(value + 0.5))


def to_gray(rgba: np.ndarray) -> np.ndarray:
    """RGBA interleaved -> buffer luminance float32 sepanjang W*H. Alpha diabaikan."""
    px = np.asarray(rgba).reshape(-1, 4).astype(np.float64)
    gray = 0.299 * px[:, 0] + 0.587 * px[:, 1] + 0.114 * px[:, 2]
    return gray.astype(np.float32)


def invert_gray(gray: np.ndarray) -> np.ndarray:
    return (255 - np.asarray(gray, dtype=np.float32)).astype(np.float32)


def load_rgba(source: ImageRef) -> np.ndarray:
    """Decode path / bytes / array menjadi array RGBA (H, W, 4) uint8."""
    if isinstance(source, np.ndarray):
        arr = source
        if arr.ndim == 2:
            arr = np.stack([arr, arr, arr, np.full_like(arr, 255)], axis=2)
        elif arr.shape[2] == 3:
            alpha = np.full(arr.shape[:2] + (1,), 255, dtype=arr.dtype)
            arr = np.concatenate([arr, alpha], axis=2)
        return np.ascontiguousarray(arr, dtype=np.uint8)

    if isinstance(source, (bytes, bytearray)):
        img = Image.open(io.BytesIO(source))
    else:
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Could not load image: {path}")
        img = Image.open(path)

    return np.array(img.convert("RGBA"), dtype=np.uint8)


def save_png(rgba: np.ndarray, path: Union[str, Path]):
    Image.fromarray(np.ascontiguousarray(rgba, dtype=np.uint8)).save(str(path), format="PNG")


def draw_to_size(rgba: np.ndarray, max_w: int = MAX_WORKING_WIDTH) -> Tuple[np.ndarray, float]:
    """
    Buat salinan kerja dengan lebar maksimal max_w.

    Returns:
        small: gambar RGBA hasil downscale (atau salinan jika sudah cukup kecil)
        scale: rasio downscale (1.0 jika tidak diperkecil)
    """
    require_raster()
    h, w = rgba.shape[:2]
    scale = max_w / w if w > max_w else 1.0
    new_w = max(1, round_half_up(w * scale))
    new_h = max(1, round_half_up(h * scale))

    if (new_w, new_h) == (w, h):
        return rgba.copy(), scale

    small = cv2.resize(rgba, (new_w, new_h), interpolation=cv2.INTER_AREA)
    return small, scale


def scale_gray_nearest(gray: np.ndarray, src_w: int, src_h: int,
                       dst_w: int, dst_h: int) -> np.ndarray:
    """Resample nearest-neighbor tanpa rasterisasi (jalur array saja)."""
    src = np.asarray(gray, dtype=np.float32).reshape(src_h, src_w)

    # ambil piksel di tengah tiap sel tujuan
    ys = np.minimum(src_h - 1, np.floor((np.arange(dst_h) + 0.5) * src_h / dst_h).astype(np.int64))
    xs = np.minimum(src_w - 1, np.floor((np.arange(dst_w) + 0.5) * src_w / dst_w).astype(np.int64))

    return np.ascontiguousarray(src[ys[:, None], xs[None, :]]).reshape(-1)


class Template:
    """Gambar referensi watermark pada resolusi aslinya."""

    def __init__(self, rgba: Optional[np.ndarray] = None, gray: Optional[np.ndarray] = None,
                 width: Optional[int] = None, height: Optional[int] = None,
                 use_raster: bool = True):
        if rgba is None and gray is None:
            raise ValueError("Template needs an RGBA raster or a grayscale buffer")

        self.rgba = rgba
        if rgba is not None:
            height, width = rgba.shape[:2]
            if gray is None:
                gray = to_gray(rgba)

        if width is None or height is None:
            raise ValueError("Grayscale template requires width and height")

        self.gray = np.asarray(gray, dtype=np.float32).reshape(-1)
        self.width = int(width)
        self.height = int(height)

        if self.gray.size != self.width * self.height:
            raise ValueError(f"Template buffer length {self.gray.size} != {self.width}x{self.height}")

        self.use_raster = use_raster

    @classmethod
    def from_image(cls, source: ImageRef, use_raster: bool = True) -> "Template":
        return cls(rgba=load_rgba(source), use_raster=use_raster)

    @classmethod
    def from_gray(cls, gray: np.ndarray, width: int, height: int) -> "Template":
        return cls(gray=gray, width=width, height=height, use_raster=False)

    @property
    def rasterizable(self) -> bool:
        return self.rgba is not None and self.use_raster and RASTER_AVAILABLE

    def scaled(self, w: int, h: int) -> np.ndarray:
        """Template grayscale berukuran w x h."""
        if self.rasterizable:
            resized = cv2.resize(self.rgba, (w, h), interpolation=cv2.INTER_AREA)
            return to_gray(resized)
        return scale_gray_nearest(self.gray, self.width, self.height, w, h)
