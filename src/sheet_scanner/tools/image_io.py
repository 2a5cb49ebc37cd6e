# src/sheet_scanner/tools/image_io.py
from __future__ import annotations
from pathlib import Path
from typing import Iterator, List, Tuple
import logging

import numpy as np
import cv2 as cv
import fitz  # PyMuPDF
from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

VIDEO_SUFFIXES = {".mp4", ".mov", ".avi", ".mkv", ".webm", ".m4v"}

# -------------------------
# Conversions
# -------------------------

def pil_to_bgr(img: Image.Image) -> np.ndarray:
    return cv.cvtColor(np.array(img.convert("RGB")), cv.COLOR_RGB2BGR)

# -------------------------
# Readers
# -------------------------

def load_image_any(path: str | Path) -> np.ndarray:
    """
    Read a raster image into a BGR array, honouring the EXIF orientation tag
    so phone photos come out upright.
    """
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Could not read image: {p}")
    try:
        with Image.open(p) as im:
            upright = ImageOps.exif_transpose(im)
            return pil_to_bgr(upright)
    except UnidentifiedImageError as e:
        raise FileNotFoundError(f"Could not read image: {p}") from e


def render_pdf_pages(pdf_path: str | Path, dpi: int = 300) -> List[np.ndarray]:
    zoom = dpi / 72.0
    mat = fitz.Matrix(zoom, zoom)
    pages: List[np.ndarray] = []
    with fitz.open(str(pdf_path)) as doc:
        if len(doc) < 1:
            raise RuntimeError(f"No pages in PDF: {pdf_path}")
        for page in doc:
            pix = page.get_pixmap(matrix=mat, alpha=False)
            rgb = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, 3)
            pages.append(cv.cvtColor(rgb, cv.COLOR_RGB2BGR))
    logger.debug("Rendered %d page(s) from %s at %d dpi", len(pages), pdf_path, dpi)
    return pages


def load_pages(paths: List[str], dpi: int = 300) -> List[Tuple[str, np.ndarray]]:
    """Expand PDFs into one entry per page; everything else is a single image."""
    out: List[Tuple[str, np.ndarray]] = []
    for p in paths:
        if str(p).lower().endswith(".pdf"):
            for i, page in enumerate(render_pdf_pages(p, dpi=dpi), start=1):
                out.append((f"{Path(p).name}#p{i}", page))
        else:
            out.append((Path(p).name, load_image_any(p)))
    return out


def is_video(path: str | Path) -> bool:
    return Path(path).suffix.lower() in VIDEO_SUFFIXES


def iter_video_frames(path: str | Path, step: int = 1) -> Iterator[Tuple[int, np.ndarray]]:
    """Yield (frame_index, BGR frame) for every `step`-th frame of a clip."""
    cap = cv.VideoCapture(str(path))
    if not cap.isOpened():
        raise FileNotFoundError(f"Could not open video: {path}")
    step = max(1, int(step))
    try:
        idx = 0
        while True:
            ok, frame = cap.read()
            if not ok:
                break
            if idx % step == 0:
                yield idx, frame
            idx += 1
    finally:
        cap.release()
