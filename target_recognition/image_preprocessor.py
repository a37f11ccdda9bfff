#!/usr/bin/env python3
"""Image loading and preprocessing for reference and test images."""

from __future__ import annotations

import logging
import os
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from .exceptions import LoadFailure

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS: Tuple[str, ...] = ('.jpg', '.jpeg', '.png', '.bmp', '.tif', '.tiff')
DEFAULT_CLAHE_CLIP = 2.0
DEFAULT_CLAHE_GRID: Tuple[int, int] = (8, 8)
DEFAULT_DENOISE_KERNEL: Tuple[int, int] = (3, 3)


class ImagePreprocessor:
	"""Load images from disk and standardise them for keypoint extraction."""

	def __init__(
		self,
		max_image_size: int = 0,
		equalize: bool = False,
		denoise: bool = False,
		supported_formats: Sequence[str] = SUPPORTED_FORMATS,
	) -> None:
		self.max_image_size = max(0, int(max_image_size or 0))
		self.equalize = equalize
		self.denoise = denoise
		self.supported_formats = tuple(fmt.lower() for fmt in supported_formats)

	def is_supported_file(self, filename: str) -> bool:
		return any(filename.lower().endswith(fmt) for fmt in self.supported_formats)

	def load(self, path: str, color_mode: int = cv2.IMREAD_GRAYSCALE, preprocess: bool = True) -> np.ndarray:
		"""Read ``path`` with ``color_mode`` and optionally run the preprocessing chain.

		Raises ``LoadFailure`` when the file is missing or cannot be decoded.
		"""

		if not os.path.isfile(path):
			raise LoadFailure(f"Image file not found: {path}")

		image = cv2.imread(path, color_mode)
		if image is None or image.size == 0:
			raise LoadFailure(f"Could not decode image: {path}")

		if preprocess:
			image = self.preprocess(image)
		return image

	def load_mask(self, path: str, expected_shape: Optional[Tuple[int, ...]] = None) -> np.ndarray:
		"""Read a grayscale mask; a size different from ``expected_shape`` is a load failure."""

		mask = self.load(path, cv2.IMREAD_GRAYSCALE, preprocess=False)
		if expected_shape is not None and mask.shape[:2] != tuple(expected_shape[:2]):
			raise LoadFailure(
				f"Mask {path} has size {mask.shape[:2]}, expected {tuple(expected_shape[:2])}"
			)
		return mask

	def preprocess(self, image: np.ndarray) -> np.ndarray:
		if self.max_image_size:
			image = self._limit_size(image)
		if self.denoise:
			image = self._denoise(image)
		if self.equalize:
			image = self._equalize(image)
		return image

	def _limit_size(self, image: np.ndarray) -> np.ndarray:
		"""Downscale so the longest side is at most ``max_image_size``."""

		height, width = image.shape[:2]
		longest = max(height, width)
		if longest <= self.max_image_size:
			return image

		scale = self.max_image_size / float(longest)
		new_size = (max(1, int(round(width * scale))), max(1, int(round(height * scale))))
		logger.debug("Resizing image from %dx%d to %dx%d", width, height, new_size[0], new_size[1])
		return cv2.resize(image, new_size, interpolation=cv2.INTER_AREA)

	def _denoise(self, image: np.ndarray) -> np.ndarray:
		return cv2.GaussianBlur(image, DEFAULT_DENOISE_KERNEL, 0)

	def _equalize(self, image: np.ndarray) -> np.ndarray:
		clahe = cv2.createCLAHE(clipLimit=DEFAULT_CLAHE_CLIP, tileGridSize=DEFAULT_CLAHE_GRID)
		if image.ndim == 2:
			return clahe.apply(image)

		lab = cv2.cvtColor(image, cv2.COLOR_BGR2LAB)
		lab[:, :, 0] = clahe.apply(lab[:, :, 0])
		return cv2.cvtColor(lab, cv2.COLOR_LAB2BGR)
