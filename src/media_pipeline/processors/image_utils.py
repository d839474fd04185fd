"""Image analysis helpers: EXIF, dominant colour, perceptual hash."""

from collections.abc import Iterable
from typing import Any, Dict, Tuple, Union

import numpy as np
from PIL import Image
from PIL.ExifTags import TAGS
from sklearn.cluster import KMeans


def extract_exif_data(img: Image.Image) -> Dict[str, Any]:
    """
    Extract EXIF metadata from PIL Image, handling privacy concerns.

    Args:
        img: PIL Image to extract EXIF from

    Returns:
        Dictionary of EXIF tags with GPS data removed and values made
        JSON-serializable
    """
    exif_dict: Dict[str, Any] = {}

    exif_data_raw = img.getexif()
    for tag_id, value in exif_data_raw.items():
        tag = TAGS.get(tag_id, tag_id)

        # Skip GPS data for privacy
        if "gps" in str(tag).lower():
            continue

        processed_value: Union[str, int, float]
        if isinstance(value, bytes):
            try:
                processed_value = value.decode("utf-8")
            except UnicodeDecodeError:
                processed_value = str(value)
        elif isinstance(value, (str, int, float)):
            processed_value = value
        elif isinstance(value, Iterable):
            processed_value = str(value)
        else:
            processed_value = str(value)

        exif_dict[str(tag)] = processed_value

    return exif_dict


def dominant_color(img: Image.Image, k: int = 3, sample_size: int = 64) -> str:
    """
    Dominant colour as ``#rrggbb`` using scikit-learn K-means.

    The image is downsampled first; the centre of the most populated cluster
    wins.
    """
    sample = img.convert("RGB").resize((sample_size, sample_size))
    pixels = np.asarray(sample, dtype=np.float64).reshape(-1, 3)

    distinct = len(np.unique(pixels, axis=0))
    clusters = max(1, min(k, distinct))

    kmeans = KMeans(n_clusters=clusters, random_state=42, n_init="auto")
    labels = kmeans.fit_predict(pixels)
    counts = np.bincount(labels, minlength=clusters)
    center = kmeans.cluster_centers_[int(np.argmax(counts))]

    r, g, b = (int(round(c)) for c in np.clip(center, 0, 255))
    return f"#{r:02x}{g:02x}{b:02x}"


def average_hash(img: Image.Image, hash_size: int = 8) -> str:
    """Perceptual average hash as a hex string (``hash_size**2`` bits)."""
    small = img.convert("L").resize((hash_size, hash_size), Image.Resampling.LANCZOS)
    pixels = np.asarray(small, dtype=np.float64)
    bits = (pixels > pixels.mean()).flatten()
    value = 0
    for bit in bits:
        value = (value << 1) | int(bit)
    return f"{value:0{hash_size * hash_size // 4}x}"


def fit_within(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Largest size with the same aspect ratio inside the box. Never upscales."""
    if width <= max_width and height <= max_height:
        return width, height
    ratio = min(max_width / width, max_height / height)
    return max(1, int(width * ratio)), max(1, int(height * ratio))


def cover_crop(img: Image.Image, size: int) -> Image.Image:
    """Square thumbnail: scale to cover then centre-crop."""
    width, height = img.size
    scale = size / min(width, height)
    resized = img.resize(
        (max(size, round(width * scale)), max(size, round(height * scale))),
        Image.Resampling.LANCZOS,
    )
    left = (resized.width - size) // 2
    top = (resized.height - size) // 2
    return resized.crop((left, top, left + size, top + size))
