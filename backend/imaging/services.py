"""
Pluggable analysis services. The engine depends only on the small ``detect`` /
``extract`` contracts below, so tests and deployments can swap implementations.
"""
from __future__ import annotations

from typing import List, Optional, Protocol, Tuple

import cv2
import numpy as np
from PIL import Image

from config import logger
from imaging.geometry import FaceBox


class FaceDetectionService(Protocol):
    def detect(self, image: Image.Image, sensitivity: int) -> List[FaceBox]: ...


class ColorExtractionService(Protocol):
    def extract(self, image: Image.Image, sample_count: int = 10) -> Tuple[int, int, int]: ...

    def average(self, image: Image.Image) -> Tuple[int, int, int]: ...


class HaarFaceDetector:
    """OpenCV frontal-face Haar cascade. ``sensitivity`` (1-9) maps onto ``minNeighbors``."""

    CASCADE = "haarcascade_frontalface_default.xml"

    def __init__(self, cascade_path: Optional[str] = None):
        self.cascade_path = cascade_path or cv2.data.haarcascades + self.CASCADE
        self._cascade = None

    @property
    def cascade(self):
        if self._cascade is None:
            self._cascade = cv2.CascadeClassifier(self.cascade_path)
            if self._cascade.empty():
                raise RuntimeError(f"Could not load face cascade {self.cascade_path}")
        return self._cascade

    def detect(self, image: Image.Image, sensitivity: int = 3) -> List[FaceBox]:
        gray = np.array(image.convert("L"))
        faces = self.cascade.detectMultiScale(
            gray,
            scaleFactor=1.1,
            minNeighbors=max(1, int(sensitivity)) + 2,
            minSize=(30, 30),
        )
        boxes = [FaceBox(int(x), int(y), int(w), int(h)) for (x, y, w, h) in faces]
        logger.info("Face detection found %d face(s)", len(boxes))
        return boxes


class PaletteColorExtractor:
    """
    Dominant colour by median-cut quantisation of a sampled copy of the image.
    Transparent and near-white pixels are ignored, as they rarely describe the picture.
    """

    def __init__(self, palette_size: int = 5):
        self.palette_size = palette_size

    def _samples(self, image: Image.Image, sample_count: int) -> np.ndarray:
        rgba = np.asarray(image.convert("RGBA"))
        pixels = rgba.reshape(-1, 4)[:: max(1, int(sample_count))]
        keep = (pixels[:, 3] >= 125) & ~np.all(pixels[:, :3] > 250, axis=1)
        chosen = pixels[keep][:, :3]
        if chosen.size == 0:
            chosen = pixels[:, :3]
        return chosen

    def extract(self, image: Image.Image, sample_count: int = 10) -> Tuple[int, int, int]:
        samples = self._samples(image, sample_count)
        strip = Image.fromarray(samples.reshape(1, -1, 3).astype(np.uint8), "RGB")
        quantised = strip.quantize(colors=self.palette_size, method=Image.Quantize.MEDIANCUT)
        palette = quantised.getpalette()
        counts = sorted(quantised.getcolors() or [], reverse=True)
        if not counts:
            return tuple(int(c) for c in samples.mean(axis=0))  # type: ignore[return-value]
        index = counts[0][1]
        return (palette[index * 3], palette[index * 3 + 1], palette[index * 3 + 2])

    def average(self, image: Image.Image) -> Tuple[int, int, int]:
        rgb = np.asarray(image.convert("RGB"), dtype=np.float64)
        mean = rgb.reshape(-1, 3).mean(axis=0)
        return (int(round(mean[0])), int(round(mean[1])), int(round(mean[2])))
