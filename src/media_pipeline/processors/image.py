"""Image processor: metadata, optimized rendition, thumbnails, WebP, preview."""

import io
from typing import Any, Dict, List, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from ..core.config import ImageOptions
from ..core.exceptions import ValidationError
from ..core.models import (
    ArtifactType,
    DerivedArtifact,
    ProcessOptions,
    ProcessorOutput,
    ProcessorType,
)
from .base import Processor
from .image_utils import average_hash, cover_crop, dominant_color, extract_exif_data, fit_within

# Formats re-encoded as themselves; everything else becomes JPEG.
_NATIVE_OUTPUT_FORMATS = {"JPEG", "PNG", "WEBP"}


def _open_image(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


class ImageProcessor(Processor):
    """Pillow-backed image stage."""

    processor_type = ProcessorType.IMAGE

    def __init__(self, options: Optional[ImageOptions] = None):
        self.options = options or ImageOptions()
        super().__init__()

    def supports(self, mime_type: str, file_name: str = "") -> bool:
        if mime_type and mime_type.lower().startswith("image/"):
            return True
        ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
        return ext in self.options.supported_formats

    def validate(self, data: bytes, options: ProcessOptions) -> None:
        self.check_size(data, self.options.max_file_size, "Image")
        try:
            image = Image.open(io.BytesIO(data))
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
            raise ValidationError(f"Unable to read image: {exc}", field="data") from exc

        image_format = (image.format or "").lower()
        if image_format not in self.options.supported_formats:
            raise ValidationError(f"Unsupported image format: {image_format or 'unknown'}", field="format")

        problems = []
        if image.width > self.options.max_width:
            problems.append(f"width {image.width} > {self.options.max_width}")
        if image.height > self.options.max_height:
            problems.append(f"height {image.height} > {self.options.max_height}")
        if problems:
            raise ValidationError(f"Image validation failed: {', '.join(problems)}", field="dimensions")

    def _process(self, data: bytes, options: ProcessOptions) -> ProcessorOutput:
        image = _open_image(data)
        metadata = self.extract_metadata(image)
        oriented = ImageOps.exif_transpose(image)

        artifacts: List[DerivedArtifact] = [self._optimized(oriented, image.format or "JPEG")]
        artifacts.extend(self._thumbnails(oriented))
        if self.options.generate_webp and image.format != "WEBP":
            artifacts.append(self._webp(oriented))
        artifacts.append(self._preview(oriented))

        self.logger.debug(
            f"Processed image {options.file_name}: {metadata['width']}x{metadata['height']}, "
            f"{len(artifacts)} artifacts"
        )
        return ProcessorOutput(metadata=metadata, artifacts=artifacts)

    def extract_metadata(self, image: Image.Image) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "width": image.width,
            "height": image.height,
            "format": (image.format or "unknown").lower(),
            "mode": image.mode,
            "has_alpha": image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info,
            "is_animated": bool(getattr(image, "is_animated", False)),
            "frames": int(getattr(image, "n_frames", 1)),
            "aspect_ratio": round(image.width / image.height, 4) if image.height else None,
        }
        dpi = image.info.get("dpi")
        if dpi:
            metadata["dpi"] = [float(v) for v in dpi]
        exif = extract_exif_data(image)
        if exif:
            metadata["exif"] = exif
        metadata["dominant_color"] = dominant_color(image, k=self.options.dominant_color_clusters)
        metadata["perceptual_hash"] = average_hash(image)
        return metadata

    def _encode(self, image: Image.Image, image_format: str, **params: Any) -> bytes:
        if image_format == "JPEG" and image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        elif image_format == "PNG" and image.mode not in ("1", "L", "LA", "P", "RGB", "RGBA", "I"):
            image = image.convert("RGB")
        buffer = io.BytesIO()
        image.save(buffer, format=image_format, **params)
        return buffer.getvalue()

    def _save_params(self, image_format: str) -> Dict[str, Any]:
        if image_format == "JPEG":
            return {"quality": self.options.jpeg_quality, "optimize": True, "progressive": True}
        if image_format == "WEBP":
            return {"quality": self.options.webp_quality}
        return {"optimize": True, "compress_level": self.options.png_compress_level}

    def _optimized(self, image: Image.Image, source_format: str) -> DerivedArtifact:
        image_format = source_format if source_format in _NATIVE_OUTPUT_FORMATS else "JPEG"

        width, height = fit_within(image.width, image.height, self.options.max_width, self.options.max_height)
        if (width, height) != image.size:
            image = image.resize((width, height), Image.Resampling.LANCZOS)

        data = self._encode(image, image_format, **self._save_params(image_format))
        return DerivedArtifact(
            artifact_type=ArtifactType.OPTIMIZED,
            data=data,
            format=image_format.lower(),
            width=width,
            height=height,
            label="optimized",
        )

    def _thumbnails(self, image: Image.Image) -> List[DerivedArtifact]:
        thumbnails = []
        for size in self.options.thumbnail_sizes:
            thumb = cover_crop(image, size)
            data = self._encode(thumb, "JPEG", quality=self.options.jpeg_quality, optimize=True)
            thumbnails.append(
                DerivedArtifact(
                    artifact_type=ArtifactType.THUMBNAIL,
                    data=data,
                    format="jpeg",
                    width=size,
                    height=size,
                    label=f"thumbnail_{size}",
                )
            )
        return thumbnails

    def _webp(self, image: Image.Image) -> DerivedArtifact:
        data = self._encode(image, "WEBP", quality=self.options.webp_quality)
        return DerivedArtifact(
            artifact_type=ArtifactType.WEBP,
            data=data,
            format="webp",
            width=image.width,
            height=image.height,
            label="webp",
        )

    def _preview(self, image: Image.Image) -> DerivedArtifact:
        max_size = self.options.preview_max_size
        width, height = fit_within(image.width, image.height, max_size, max_size)
        preview = image.resize((width, height), Image.Resampling.LANCZOS) if (width, height) != image.size else image
        data = self._encode(preview, "JPEG", quality=self.options.preview_quality, progressive=True)
        return DerivedArtifact(
            artifact_type=ArtifactType.PREVIEW,
            data=data,
            format="jpeg",
            width=width,
            height=height,
            label="preview",
        )
