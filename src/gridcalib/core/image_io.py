from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image


def load_image(path: str | Path, gray: bool = False) -> np.ndarray:
    """
    Load an image as uint8, either grayscale (H,W) or BGR (H,W,3).

    OpenCV is tried first; Pillow reads formats that an OpenCV build may lack.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Missing {p}")
    try:
        import cv2  # type: ignore

        img = cv2.imread(str(p), cv2.IMREAD_GRAYSCALE if gray else cv2.IMREAD_COLOR)
        if img is not None:
            if img.dtype != np.uint8:
                img = np.clip(img, 0, 255).astype(np.uint8)
            return img
    except ImportError:
        pass

    with Image.open(p) as im:
        if gray:
            return np.asarray(im.convert("L"), dtype=np.uint8)
        rgb = np.asarray(im.convert("RGB"), dtype=np.uint8)
    return np.ascontiguousarray(rgb[:, :, ::-1])


def save_image(path: str | Path, img: np.ndarray) -> Path:
    """Write a grayscale or BGR uint8 image; format follows the file suffix."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    arr = np.asarray(img)
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    if arr.ndim == 3:
        arr = arr[:, :, ::-1]
    Image.fromarray(np.ascontiguousarray(arr)).save(p)
    return p


def image_size(img: np.ndarray) -> tuple[int, int]:
    """(width, height) of an image array."""
    return int(img.shape[1]), int(img.shape[0])
