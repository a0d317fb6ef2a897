import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Sequence

import img2pdf
from PIL import Image

from k2p.errors import AssemblyError


class PDFQuality(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# JPEG quality per level; None keeps the lossless PNG.
JPEG_QUALITY = {
    PDFQuality.LOW: 60,
    PDFQuality.MEDIUM: 85,
    PDFQuality.HIGH: None,
}


class PDFAssembler:
    """
    Builds a PDF with one page per image, each page sized to its image.

    High quality embeds the screenshots losslessly; medium and low
    re-encode them as JPEG first.
    """

    def __init__(self):
        self.log = logging.getLogger("PDFAssembler")

    def _prepare(self, src: Path, workdir: Path, index: int, quality: PDFQuality) -> Path:
        jpeg_quality = JPEG_QUALITY[quality]
        with Image.open(src) as img:
            # img2pdf refuses images with an alpha channel.
            if jpeg_quality is None and img.mode in ("RGB", "L"):
                return src
            rgb = img.convert("RGB")

        if jpeg_quality is None:
            out = workdir / f"page_{index:04d}.png"
            rgb.save(out, format="PNG")
        else:
            out = workdir / f"page_{index:04d}.jpg"
            rgb.save(out, format="JPEG", quality=jpeg_quality, optimize=True)
        return out

    def create(self, image_paths: Sequence, output_path, quality=PDFQuality.HIGH) -> Path:
        """
        Write ``image_paths`` (in order) to ``output_path``.

        :raises AssemblyError: no images, unreadable image, or unwritable output.
        """
        quality = PDFQuality(quality)
        output_path = Path(output_path)
        paths = [Path(p) for p in image_paths]

        if not paths:
            raise AssemblyError("No images provided")
        for p in paths:
            if not p.is_file():
                raise AssemblyError(f"Image file not found: {p}")

        self.log.info(f"Generating PDF from {len(paths)} pages ({quality.value} quality)...")
        tmp = output_path.with_name(output_path.name + ".tmp")
        try:
            with tempfile.TemporaryDirectory(prefix="k2p-pdf-") as workdir:
                prepared = [
                    str(self._prepare(p, Path(workdir), i, quality))
                    for i, p in enumerate(paths, start=1)
                ]
                with open(tmp, "wb") as f:
                    f.write(img2pdf.convert(prepared))
            os.replace(tmp, output_path)
        except (OSError, img2pdf.ImageOpenError, img2pdf.PdfTooLargeError) as e:
            tmp.unlink(missing_ok=True)
            raise AssemblyError(f"Failed to create PDF {output_path}: {e}") from e

        self.log.info(f"PDF written to {output_path}")
        return output_path
