"""
Benchmark Script for Watermark Detection and Removal

Builds a synthetic ground truth by compositing the watermark template onto a
clean image at a known position and scale, then:
1. Runs the two-pass detector and checks the recovered box (IoU, score, time)
2. Removes the detected box with two methods:
   - Telea (OpenCV baseline)
   - Stripe fill (proposed method)

Metrics: IoU, PSNR, SSIM, Processing Time

Usage:
    python benchmark.py --clean <clean_image> --template <template_image> [--x 40 --y 60 --scale 1.0] [--output <output_dir>]

Example:
    python benchmark.py --clean data/photo.png --template xcom_dark.png --output results/
"""

import cv2
import numpy as np
import time
import argparse
from pathlib import Path
from typing import Tuple, Dict

# Metrics
from skimage.metrics import structural_similarity as ssim
from skimage.metrics import peak_signal_noise_ratio as psnr

from imaging import Template, load_rgba, round_half_up
from inpainter import RegionInpainter
from pipeline import detect, match_to_rect

Rect = Tuple[int, int, int, int]


def load_images(clean_path: str, template_path: str) -> Tuple[np.ndarray, np.ndarray]:
    """
    Load clean image and watermark template.

    Returns:
        clean_image: Ground truth (RGBA)
        template: Watermark template (RGBA, alpha used for compositing)
    """
    print(f"[BENCHMARK] Loading clean image: {clean_path}")
    clean_bgr = cv2.imread(clean_path, cv2.IMREAD_COLOR)
    if clean_bgr is None:
        raise FileNotFoundError(f"Could not load clean image: {clean_path}")
    clean_image = cv2.cvtColor(clean_bgr, cv2.COLOR_BGR2RGBA)

    print(f"[BENCHMARK] Loading template: {template_path}")
    template = load_rgba(template_path)

    print(f"[BENCHMARK] Image size: {clean_image.shape[1]}×{clean_image.shape[0]}")
    print(f"[BENCHMARK] Template size: {template.shape[1]}×{template.shape[0]}")

    return clean_image, template


def composite_watermark(clean_image: np.ndarray, template: np.ndarray,
                        x: int, y: int, scale: float = 1.0) -> Tuple[np.ndarray, Rect]:
    """
    Alpha-blend the template onto a copy of the clean image.

    Returns the watermarked image and the true box (x, y, w, h).
    """
    h, w = clean_image.shape[:2]
    tw = max(1, round_half_up(template.shape[1] * scale))
    th = max(1, round_half_up(template.shape[0] * scale))
    if x < 0 or y < 0 or x + tw > w or y + th > h:
        raise ValueError(f"Template {tw}×{th} at ({x}, {y}) does not fit in {w}×{h}")

    scaled = cv2.resize(template, (tw, th), interpolation=cv2.INTER_AREA)
    alpha = scaled[:, :, 3:4].astype(np.float64) / 255.0

    result = clean_image.copy()
    region = result[y:y + th, x:x + tw, :3].astype(np.float64)
    blended = scaled[:, :, :3] * alpha + region * (1 - alpha)
    result[y:y + th, x:x + tw, :3] = np.clip(np.rint(blended), 0, 255).astype(np.uint8)

    return result, (x, y, tw, th)


def box_iou(a: Rect, b: Rect) -> float:
    ax, ay, aw, ah = a
    bx, by, bw, bh = b
    ix = max(0, min(ax + aw, bx + bw) - max(ax, bx))
    iy = max(0, min(ay + ah, by + bh) - max(ay, by))
    inter = ix * iy
    union = aw * ah + bw * bh - inter
    return inter / union if union > 0 else 0.0


def calculate_metrics(ground_truth: np.ndarray, result: np.ndarray,
                      rect: Rect) -> Dict[str, float]:
    """
    Calculate PSNR and SSIM between ground truth and result (RGB channels).

    PSNR is also calculated on the removed box only.
    """
    gt = ground_truth[:, :, :3]
    res = result[:, :, :3]

    psnr_value = psnr(gt, res, data_range=255)
    ssim_value = ssim(gt, res, channel_axis=2, data_range=255)

    x, y, w, h = rect
    gt_box = gt[y:y + h, x:x + w].astype(float)
    res_box = res[y:y + h, x:x + w].astype(float)
    mse_box = np.mean((gt_box - res_box) ** 2) if gt_box.size else 0.0
    if mse_box > 0:
        psnr_box = 10 * np.log10(255**2 / mse_box)
    else:
        psnr_box = float('inf')

    return {
        'psnr_full': psnr_value,
        'ssim_full': ssim_value,
        'psnr_box': psnr_box,
    }


def remove_telea(image: np.ndarray, rect: Rect) -> np.ndarray:
    """OpenCV Telea on the same box, alpha kept from the input."""
    x, y, w, h = rect
    mask = np.zeros(image.shape[:2], dtype=np.uint8)
    mask[y:y + h, x:x + w] = 255

    bgr = cv2.cvtColor(image, cv2.COLOR_RGBA2BGR)
    filled = cv2.inpaint(bgr, mask, inpaintRadius=3, flags=cv2.INPAINT_TELEA)

    result = cv2.cvtColor(filled, cv2.COLOR_BGR2RGBA)
    result[:, :, 3] = image[:, :, 3]
    return result


def remove_stripe(image: np.ndarray, rect: Rect) -> np.ndarray:
    return RegionInpainter().inpaint_rect(image.copy(), rect)


def run_benchmark(clean_image: np.ndarray, watermarked: np.ndarray,
                  template: np.ndarray, true_rect: Rect) -> Dict[str, Dict]:
    """
    Detect once, then run both removal methods on the detected box.
    """
    results = {}

    print(f"\n{'='*60}")
    print("[BENCHMARK] Running: Detection")
    print(f"{'='*60}")

    start_time = time.time()
    match, scale_to_full = detect(watermarked, Template(rgba=template))
    detect_time = time.time() - start_time

    if match is None:
        print(f"[BENCHMARK] Detection failed after {detect_time:.2f}s")
        results['Detection'] = {'time': detect_time, 'score': 0.0, 'iou': 0.0, 'rect': None}
        return results

    h, w = watermarked.shape[:2]
    rect = match_to_rect(match, scale_to_full, w, h)
    iou = box_iou(rect, true_rect)
    results['Detection'] = {'time': detect_time, 'score': match.score, 'iou': iou, 'rect': rect}

    print(f"[BENCHMARK] Detected {rect} (true {true_rect}) in {detect_time:.2f}s")
    print(f"[BENCHMARK] Score: {match.score:.4f} | IoU: {iou:.3f}")

    methods = [
        ("Telea", remove_telea),
        ("Stripe (Ours)", remove_stripe),
    ]

    for name, method in methods:
        print(f"\n{'='*60}")
        print(f"[BENCHMARK] Running: {name}")
        print(f"{'='*60}")

        start_time = time.time()
        result = method(watermarked, rect)
        elapsed_time = time.time() - start_time

        metrics = calculate_metrics(clean_image, result, rect)

        results[name] = {
            'result': result,
            'time': elapsed_time,
            'psnr': metrics['psnr_full'],
            'ssim': metrics['ssim_full'],
            'psnr_box': metrics['psnr_box'],
        }

        print(f"[BENCHMARK] {name} completed in {elapsed_time:.3f}s")
        print(f"[BENCHMARK] PSNR: {metrics['psnr_full']:.2f} dB | SSIM: {metrics['ssim_full']:.4f}")

    return results


def print_markdown_table(results: Dict[str, Dict]):
    """Print results as a Markdown table."""
    print("\n")
    print("=" * 70)
    print("BENCHMARK RESULTS")
    print("=" * 70)
    print()

    det = results.get('Detection')
    if det:
        print(f"Detection: score {det['score']:.4f} | IoU {det['iou']:.3f} | {det['time']:.2f}s")
        print()

    print("| Method | Time (s) | PSNR (dB) | PSNR box (dB) | SSIM |")
    print("|--------|----------|-----------|---------------|------|")

    for name in ["Telea", "Stripe (Ours)"]:
        if name in results:
            r = results[name]
            print(f"| {name} | {r['time']:.3f} | {r['psnr']:.2f} | {r['psnr_box']:.2f} | {r['ssim']:.4f} |")

    print()


def main():
    parser = argparse.ArgumentParser(description="Benchmark Watermark Detection and Removal")
    parser.add_argument("--clean", "-c", required=True, help="Path to clean (ground truth) image")
    parser.add_argument("--template", "-t", required=True, help="Path to watermark template")
    parser.add_argument("--x", type=int, default=None, help="Watermark x (default: 5%% of width)")
    parser.add_argument("--y", type=int, default=None, help="Watermark y (default: 10%% of height)")
    parser.add_argument("--scale", type=float, default=1.0, help="Watermark scale")
    parser.add_argument("--output", "-o", default="benchmark_results", help="Output directory")

    args = parser.parse_args()

    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    print("=" * 70)
    print("WATERMARK REMOVAL BENCHMARK")
    print("=" * 70)

    clean_image, template = load_images(args.clean, args.template)

    h, w = clean_image.shape[:2]
    x = args.x if args.x is not None else int(w * 0.05)
    y = args.y if args.y is not None else int(h * 0.10)
    watermarked, true_rect = composite_watermark(clean_image, template, x, y, args.scale)

    cv2.imwrite(str(output_dir / "input_watermarked.png"), cv2.cvtColor(watermarked, cv2.COLOR_RGBA2BGR))

    results = run_benchmark(clean_image, watermarked, template, true_rect)

    for name, data in results.items():
        if 'result' in data:
            safe_name = name.replace(" ", "_").replace("(", "").replace(")", "")
            cv2.imwrite(str(output_dir / f"result_{safe_name}.png"),
                        cv2.cvtColor(data['result'], cv2.COLOR_RGBA2BGR))

    print_markdown_table(results)

    print(f"\n[BENCHMARK] Results saved to: {output_dir.absolute()}")
    return results


if __name__ == "__main__":
    main()
