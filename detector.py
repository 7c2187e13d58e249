"""
Deteksi Watermark - Pencarian Template Multi-Skala Dua Tahap

Fitur utama:
- Tahap 1: area fokus (pita atas gambar), grid stride 3
- Tahap 2 (fallback): seluruh gambar, grid stride 4, ambang lebih longgar
- Gate MAD murah dulu, lalu skor komposit 0.5*MAD + 0.5*NCC untuk kandidat yang lolos
- Template gelap dan versi inversinya (polaritas) selalu dicek dua-duanya
"""

import numpy as np
from typing import Callable, Generator, NamedTuple, Optional, Sequence, Tuple

from imaging import MAX_WORKING_WIDTH, Template, draw_to_size, invert_gray, round_half_up, to_gray
from similarity import mad_row_scores, similarity_mad, similarity_ncc


class Match(NamedTuple):
    x: int
    y: int
    w: int
    h: int
    score: float


class SearchPass(NamedTuple):
    """Parameter satu tahap pencarian. Area dalam pecahan lebar/tinggi gambar."""
    name: str
    step: int
    gate_step: int
    gate_abort: float
    gate_min: float
    refine_abort: float
    ncc_step: int
    left: float
    right_margin: int
    top: float
    bottom: float


class SearchProgress(NamedTuple):
    pass_name: str
    scale_index: int
    scale_count: int
    row: Optional[int]  # None = selesai satu skala
    best: Optional[Match]


DEFAULT_SCALES = (0.4, 0.5, 0.6, 0.75, 0.9, 1.0, 1.1, 1.25, 1.4, 1.6, 1.8)

FOCUSED_PASS = SearchPass(name="focused", step=3, gate_step=3, gate_abort=0.82, gate_min=0.84,
                          refine_abort=0.88, ncc_step=2,
                          left=0.02, right_margin=4, top=0.05, bottom=0.55)

FALLBACK_PASS = SearchPass(name="fallback", step=4, gate_step=3, gate_abort=0.80, gate_min=0.82,
                           refine_abort=0.86, ncc_step=2,
                           left=0.0, right_margin=0, top=0.0, bottom=1.0)

REFINE_MAD_WEIGHT = 0.5


class WatermarkDetector:
    """Mesin pencarian watermark. Satu instance = satu pencarian pada satu waktu."""

    def __init__(self, scales: Sequence[float] = DEFAULT_SCALES,
                 focused_pass: SearchPass = FOCUSED_PASS,
                 fallback_pass: SearchPass = FALLBACK_PASS,
                 fallback_below: float = 0.88, accept_above: float = 0.87,
                 min_template_size: int = 6):
        self.scales = tuple(sorted(scales))
        self.focused_pass = focused_pass
        self.fallback_pass = fallback_pass
        self.fallback_below = fallback_below
        self.accept_above = accept_above
        self.min_template_size = min_template_size

        # variabel tracking progress
        self.progress_callback: Optional[Callable] = None
        self.is_running = False

    def find(self, src: np.ndarray, src_w: int, src_h: int, template: Template,
             progress_callback: Optional[Callable] = None) -> Optional[Match]:
        """
        Jalankan pencarian sampai selesai.

        progress_callback dipanggil di setiap titik yield (tiap baris dan tiap skala)
        dengan SearchProgress. Callback boleh raise untuk membatalkan pencarian.
        """
        self.progress_callback = progress_callback
        self.is_running = True

        steps = self.search(src, src_w, src_h, template)
        try:
            while True:
                try:
                    progress = next(steps)
                except StopIteration as stop:
                    return stop.value
                if self.progress_callback:
                    self.progress_callback(progress)
        finally:
            steps.close()
            self.is_running = False

    def find_in_rgba(self, rgba: np.ndarray, template: Template,
                     max_width: int = MAX_WORKING_WIDTH,
                     progress_callback: Optional[Callable] = None) -> Tuple[Optional[Match], float]:
        """Jalur raster: downscale gambar penuh, cari, kembalikan (match, scale_to_full)."""
        small, scale = draw_to_size(rgba, max_width)
        h, w = small.shape[:2]
        match = self.find(to_gray(small), w, h, template, progress_callback)
        return match, 1 / scale

    def search(self, src: np.ndarray, src_w: int, src_h: int,
               template: Template) -> Generator[SearchProgress, None, Optional[Match]]:
        """Generator pencarian; yield tiap baris & skala, return Match yang diterima atau None."""
        src = np.asarray(src, dtype=np.float32).reshape(-1)
        if src.size != src_w * src_h:
            raise ValueError(f"Source buffer length {src.size} != {src_w}x{src_h}")

        print(f"[DETECTOR] Searching {template.width}x{template.height} template "
              f"in {src_w}x{src_h} ({len(self.scales)} scales)")

        best = yield from self._run_pass(self.focused_pass, src, src_w, src_h, template, None)

        if best is None or best.score < self.fallback_below:
            score = f"{best.score:.3f}" if best else "none"
            print(f"[DETECTOR] Focused pass weak (best={score}), widening to full frame")
            best = yield from self._run_pass(self.fallback_pass, src, src_w, src_h, template, best)

        if best is not None and best.score > self.accept_above:
            print(f"[DETECTOR] ✅ Match at ({best.x}, {best.y}) {best.w}x{best.h} score={best.score:.3f}")
            return best

        print(f"[DETECTOR] No match above {self.accept_above}")
        return None

    def _run_pass(self, sp: SearchPass, src: np.ndarray, src_w: int, src_h: int,
                  template: Template, best: Optional[Match]):
        x0 = int(np.floor(src_w * sp.left))
        x1 = src_w - sp.right_margin
        y0 = int(np.floor(src_h * sp.top))
        y1 = int(np.floor(src_h * sp.bottom))
        n_scales = len(self.scales)

        for si, s in enumerate(self.scales):
            w = max(self.min_template_size, round_half_up(template.width * s))
            h = max(self.min_template_size, round_half_up(template.height * s))
            if w >= src_w or h >= src_h:
                continue

            tpl_dark = template.scaled(w, h)
            tpl_light = invert_gray(tpl_dark)
            xs = np.arange(x0, x1 - w + 1, sp.step)

            for y in range(y0, y1 - h + 1, sp.step):
                if xs.size:
                    # gate kasar: MAD stride besar, ambil polaritas terbaik
                    gate = np.maximum(
                        mad_row_scores(src, src_w, xs, y, tpl_dark, w, h, sp.gate_step, sp.gate_abort),
                        mad_row_scores(src, src_w, xs, y, tpl_light, w, h, sp.gate_step, sp.gate_abort),
                    )
                    for x in xs[gate >= sp.gate_min]:
                        x = int(x)
                        score = self._refine(src, src_w, x, y, tpl_dark, tpl_light, w, h, sp)
                        if best is None or score > best.score:
                            best = Match(x, y, w, h, score)

                yield SearchProgress(sp.name, si, n_scales, y, best)

            score = f"{best.score:.3f}" if best else "-"
            print(f"[DETECTOR] {sp.name} scale {s:.2f} ({w}x{h}) best={score}")
            yield SearchProgress(sp.name, si, n_scales, None, best)

        return best

    def _refine(self, src: np.ndarray, src_w: int, x: int, y: int,
                tpl_dark: np.ndarray, tpl_light: np.ndarray, w: int, h: int,
                sp: SearchPass) -> float:
        """Skor komposit MAD (stride 1) + NCC untuk kedua polaritas, ambil maksimum."""
        scores = []
        for tpl in (tpl_dark, tpl_light):
            mad = similarity_mad(src, src_w, x, y, tpl, w, h, 1, sp.refine_abort)
            ncc = similarity_ncc(src, src_w, x, y, tpl, w, h, sp.ncc_step)
            scores.append(REFINE_MAD_WEIGHT * mad + (1 - REFINE_MAD_WEIGHT) * ncc)
        return max(scores)
