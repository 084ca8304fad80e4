"""
Label Artifact Converter

Turns a carrier-issued label image (PNG/GIF/JPEG, bytes or URL) into a
single-page PDF whose page is exactly the image's pixel size:
- Dimensions come from the decoded image, never from the carrier or a
  hardcoded label size
- Written at 72 dpi, so 1 pixel == 1 point and the image sits at 1:1
  with zero margins
- Creation/modification dates are pinned, so identical input bytes give
  byte-identical PDFs

PDF sources are passed through untouched.
"""
import asyncio
import base64
import io
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import httpx
from PIL import Image

from parcelhub.core.config import Settings, settings as default_settings
from parcelhub.core.exceptions import ConversionError, ImageDecodeError
from parcelhub.models.carrier import LabelFormat

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"
FIXED_PDF_DATE = time.gmtime(0)
PDF_NATIVE_MODES = ("1", "L", "RGB", "CMYK")

# Pillow format name -> stored label format
IMAGE_FORMATS = {
    "PNG": LabelFormat.PNG,
    "GIF": LabelFormat.GIF,
    "JPEG": LabelFormat.JPEG,
}

_MEDIABOX_RE = re.compile(rb"/MediaBox\s*\[\s*0\s+0\s+([\d.]+)\s+([\d.]+)\s*\]")
_DATA_URL_RE = re.compile(r"^data:[\w/+.-]+;base64,(.*)$", re.DOTALL)


@dataclass
class LabelArtifact:
    """Stored label: the carrier's original bytes plus the converted PDF."""
    format: LabelFormat
    original_width: Optional[int]
    original_height: Optional[int]
    source_url: Optional[str]
    binary_content: bytes
    pdf_content: bytes


def is_pdf(data: bytes) -> bool:
    return data[:4] == PDF_MAGIC


def page_size(pdf_bytes: bytes) -> Tuple[float, float]:
    """Read (width, height) in points from the first MediaBox."""
    match = _MEDIABOX_RE.search(pdf_bytes)
    if not match:
        raise ConversionError("PDF has no MediaBox")
    return float(match.group(1)), float(match.group(2))


def decode_image(data: bytes) -> Image.Image:
    """
    Decode and verify image bytes.

    Raises:
        ImageDecodeError: empty, truncated, or not an image
    """
    if not data:
        raise ImageDecodeError("Label image is empty")
    try:
        img = Image.open(io.BytesIO(data))
        img.verify()  # Verify integrity

        # Reopen after verify (verify invalidates the image)
        img = Image.open(io.BytesIO(data))
        img.seek(0)  # First frame of animated GIFs
        img.load()
    except Exception as e:
        raise ImageDecodeError(f"Label image could not be decoded: {e}") from e

    width, height = img.size
    if width <= 0 or height <= 0:
        raise ImageDecodeError(f"Label image has invalid size {width}x{height}")
    return img


def _pdf_ready(img: Image.Image) -> Image.Image:
    if img.mode in PDF_NATIVE_MODES:
        return img
    if img.mode == "P" and "transparency" in img.info:
        img = img.convert("RGBA")
    if img.mode in ("RGBA", "LA"):
        # Flatten transparency onto white; PDF pages have no alpha background
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img.convert("RGBA"), mask=img.convert("RGBA").split()[-1])
        return background
    return img.convert("RGB")


class LabelArtifactConverter:
    """Image -> dimension-faithful PDF, plus download helpers."""

    def __init__(self, config: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config or default_settings
        self._http_client = http_client

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.config.CARRIER_HTTP_TIMEOUT_SECONDS,
                follow_redirects=True,
            )
        return self._http_client

    async def close(self):
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def image_to_pdf(self, data: bytes) -> bytes:
        """Synchronous conversion of image bytes to PDF bytes."""
        return self._render_pdf(decode_image(data))

    def _render_pdf(self, img: Image.Image) -> bytes:
        width, height = img.size
        page = _pdf_ready(img)

        buffer = io.BytesIO()
        try:
            page.save(
                buffer,
                format="PDF",
                resolution=self.config.LABEL_PDF_RESOLUTION_DPI,
                creationDate=FIXED_PDF_DATE,
                modDate=FIXED_PDF_DATE,
            )
        except (OSError, ValueError) as e:
            raise ConversionError(f"PDF generation failed: {e}") from e

        pdf = buffer.getvalue()
        if not is_pdf(pdf):
            raise ConversionError("PDF writer produced no output")

        logger.debug(f"Converted {img.format or 'image'} {width}x{height} label to PDF ({len(pdf)} bytes)")
        return pdf

    async def fetch(self, url: str) -> bytes:
        """Download label bytes from a URL or decode a base64 data URL."""
        data_match = _DATA_URL_RE.match(url)
        if data_match:
            try:
                return base64.b64decode(data_match.group(1), validate=False)
            except ValueError as e:
                raise ImageDecodeError(f"Invalid base64 label data: {e}") from e

        client = await self._get_http_client()
        try:
            response = await client.get(url)
        except httpx.RequestError as e:
            logger.error(f"Label download failed for {url}: {e}")
            raise ConversionError(f"Label download failed: {e}") from e

        if response.status_code != 200:
            raise ConversionError(
                f"Label download returned HTTP {response.status_code}",
                details={"url": url, "status": response.status_code},
            )
        if not response.content:
            raise ConversionError("Label download returned an empty body", details={"url": url})
        return response.content

    async def convert(self, source: Union[bytes, str]) -> bytes:
        """
        Convert label image bytes (or a URL to them) into PDF bytes.

        Args:
            source: Raw image bytes, an http(s) URL, or a data: URL

        Returns:
            PDF bytes; a PDF source is returned as-is
        """
        data = await self.fetch(source) if isinstance(source, str) else source
        if is_pdf(data):
            return data
        return await asyncio.to_thread(self.image_to_pdf, data)

    async def to_artifact(self, source: Union[bytes, str], source_url: Optional[str] = None) -> LabelArtifact:
        """Build the stored artifact; nothing is returned if conversion fails."""
        if isinstance(source, str):
            source_url = source_url or source
            data = await self.fetch(source)
        else:
            data = source

        if is_pdf(data):
            width, height = page_size(data)
            return LabelArtifact(
                format=LabelFormat.PDF,
                original_width=int(width),
                original_height=int(height),
                source_url=source_url,
                binary_content=data,
                pdf_content=data,
            )

        return await asyncio.to_thread(self._image_artifact, data, source_url)

    def _image_artifact(self, data: bytes, source_url: Optional[str]) -> LabelArtifact:
        img = decode_image(data)
        fmt = IMAGE_FORMATS.get(img.format)
        if fmt is None:
            raise ImageDecodeError(f"Unsupported label image format: {img.format}")
        width, height = img.size
        return LabelArtifact(
            format=fmt,
            original_width=width,
            original_height=height,
            source_url=source_url,
            binary_content=data,
            pdf_content=self._render_pdf(img),
        )
