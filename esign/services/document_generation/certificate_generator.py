"""Certificate of completion rendered from the audit report."""

import io
import logging
from typing import List, Optional
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, Preformatted, SimpleDocTemplate, Spacer

logger = logging.getLogger(__name__)


class CertificateGenerator:
    """Builds the audit-trail PDF that accompanies a sealed document."""

    def __init__(self, firm_name: Optional[str] = None):
        self.firm_name = firm_name

    def generate(
        self,
        title: str,
        report_text: str,
        signed_pdf_hash: str,
        original_pdf_hash: str,
    ) -> bytes:
        """
        Render ``report_text`` into a PDF.

        Output is reproducible for identical input.
        """
        styles = getSampleStyleSheet()
        mono = ParagraphStyle(
            "AuditMono",
            parent=styles["Code"],
            fontSize=7.5,
            leading=9.5,
        )

        story: List = [
            Paragraph("Certificate of Completion", styles["Title"]),
            Paragraph(escape(title), styles["Heading2"]),
        ]
        if self.firm_name:
            story.append(Paragraph(f"Issued by {escape(self.firm_name)}", styles["Normal"]))
        story += [
            Spacer(1, 4 * mm),
            Paragraph(f"Original document SHA-256: {original_pdf_hash}", styles["Normal"]),
            Paragraph(f"Signed document SHA-256: {signed_pdf_hash}", styles["Normal"]),
            Spacer(1, 6 * mm),
            Preformatted(report_text, mono, maxLineLength=110),
        ]

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=15 * mm,
            rightMargin=15 * mm,
            topMargin=15 * mm,
            bottomMargin=15 * mm,
            title=f"Certificate of Completion - {title}",
            invariant=1,
        )
        doc.build(story)
        return buffer.getvalue()
