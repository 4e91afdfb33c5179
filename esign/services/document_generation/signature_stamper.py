"""Overlaying captured signatures onto PDF pages."""

import base64
import binascii
import io
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader, PdfWriter
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from esign.models.signature import SignatureType

logger = logging.getLogger(__name__)


DATA_URL_PREFIX = "data:image/png;base64,"
TYPED_FONT = "Helvetica-Oblique"
MAX_TYPED_FONT_SIZE = 28.0
MIN_TYPED_FONT_SIZE = 4.0


class StampingError(Exception):
    """Raised when a signature cannot be placed on the document."""
    pass


@dataclass
class SignatureStamp:
    """One signature positioned on a page, in normalized top-left coordinates."""

    page_number: int
    x: float
    y: float
    width: float
    height: float
    signature_type: SignatureType
    data: str


def decode_drawn_signature(data: str) -> Image.Image:
    """
    Decode a ``data:image/png;base64,`` payload into an RGBA image.

    Raises:
        ValueError: the payload is not a decodable PNG data URL
    """
    if not data or not data.startswith(DATA_URL_PREFIX):
        raise ValueError("Drawn signatures must be PNG data URLs")
    try:
        raw = base64.b64decode(data[len(DATA_URL_PREFIX):], validate=True)
        image = Image.open(io.BytesIO(raw))
        image.load()
    except (binascii.Error, UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Invalid signature image: {e}")
    return image.convert("RGBA")


def _fit_font_size(text: str, box_width: float, box_height: float) -> float:
    size = min(box_height * 0.7, MAX_TYPED_FONT_SIZE)
    width = stringWidth(text, TYPED_FONT, size)
    if width > box_width * 0.95 and width > 0:
        size = size * (box_width * 0.95) / width
    return max(size, MIN_TYPED_FONT_SIZE)


class SignatureStamper:
    """
    Draws signatures over an existing PDF.

    Field positions are fractions of the page measured from the top-left
    corner; PDF user space starts at the bottom-left, so
    ``y_pt = page_height - (y + height) * page_height``.
    """

    def stamp(
        self,
        pdf_bytes: bytes,
        stamps: List[SignatureStamp],
        metadata: Optional[Dict[str, str]] = None,
    ) -> bytes:
        try:
            reader = PdfReader(io.BytesIO(pdf_bytes))
        except Exception as e:
            raise StampingError(f"Source document is not a readable PDF: {e}")

        by_page: Dict[int, List[SignatureStamp]] = defaultdict(list)
        for item in stamps:
            if item.page_number < 1 or item.page_number > len(reader.pages):
                raise StampingError(
                    f"Field on page {item.page_number} but document has {len(reader.pages)} pages"
                )
            by_page[item.page_number].append(item)

        writer = PdfWriter()
        for page_number, page in enumerate(reader.pages, start=1):
            if page_number in by_page:
                box = page.mediabox
                overlay_pdf = self._render_overlay(
                    float(box.width),
                    float(box.height),
                    by_page[page_number],
                )
                overlay_page = PdfReader(io.BytesIO(overlay_pdf)).pages[0]
                page.merge_translated_page(
                    overlay_page,
                    float(box.left),
                    float(box.bottom),
                )
            writer.add_page(page)

        if metadata:
            writer.add_metadata({f"/{key}": value for key, value in metadata.items()})

        output = io.BytesIO()
        writer.write(output)
        return output.getvalue()

    def _render_overlay(
        self,
        page_width: float,
        page_height: float,
        stamps: List[SignatureStamp],
    ) -> bytes:
        buffer = io.BytesIO()
        c = canvas.Canvas(buffer, pagesize=(page_width, page_height), invariant=1)

        for item in stamps:
            box_w = item.width * page_width
            box_h = item.height * page_height
            x_pt = item.x * page_width
            y_pt = page_height - (item.y + item.height) * page_height

            if SignatureType(item.signature_type) == SignatureType.DRAWN:
                try:
                    image = decode_drawn_signature(item.data)
                except ValueError as e:
                    raise StampingError(str(e))
                c.drawImage(
                    ImageReader(image),
                    x_pt,
                    y_pt,
                    width=box_w,
                    height=box_h,
                    mask="auto",
                    preserveAspectRatio=True,
                    anchor="sw",
                )
            else:
                text = item.data.strip()
                size = _fit_font_size(text, box_w, box_h)
                c.setFont(TYPED_FONT, size)
                c.drawString(x_pt + 2, y_pt + (box_h - size) / 2 + size * 0.2, text)

        c.showPage()
        c.save()
        return buffer.getvalue()
