"""
Simple I/O helpers for reading and writing images as RGBA PixelBuffers.
OpenCV works in BGR(A); everything past this module is RGBA.
"""

from __future__ import annotations
import cv2
import numpy as np

from screenfit.core.contracts import PixelBuffer


def from_bgr(img: np.ndarray) -> PixelBuffer:
    """Convert an OpenCV image (gray, BGR or BGRA; 8 or 16 bit) to RGBA."""
    if img.dtype == np.uint16:
        img = (img // 257).astype(np.uint8)
    elif img.dtype != np.uint8:
        img = np.clip(img, 0, 255).astype(np.uint8)
    if img.ndim == 2:
        rgba = cv2.cvtColor(img, cv2.COLOR_GRAY2RGBA)
    elif img.shape[2] == 3:
        rgba = cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)
    elif img.shape[2] == 4:
        rgba = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)
    else:
        raise ValueError(f"Unsupported channel count: {img.shape[2]}")
    return PixelBuffer(rgba)


def to_bgr(buf: PixelBuffer, keep_alpha: bool = True) -> np.ndarray:
    code = cv2.COLOR_RGBA2BGRA if keep_alpha else cv2.COLOR_RGBA2BGR
    return cv2.cvtColor(buf.data, code)


def load_image(path: str) -> PixelBuffer:
    """
    Load an image from disk as RGBA, keeping any alpha channel.
    Raises FileNotFoundError if not found.
    """
    img = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    if img is None:
        raise FileNotFoundError(f"Could not read image at: {path}")
    return from_bgr(img)


def save_image(path: str, buf: PixelBuffer) -> None:
    """
    Write a PixelBuffer; the extension picks the codec (PNG keeps alpha).
    """
    keep_alpha = not path.lower().endswith((".jpg", ".jpeg"))
    if not cv2.imwrite(path, to_bgr(buf, keep_alpha=keep_alpha)):
        raise OSError(f"Could not write image to: {path}")
