"""Document generation services package."""

from esign.services.document_generation.certificate_generator import CertificateGenerator
from esign.services.document_generation.signature_stamper import (
    SignatureStamp,
    SignatureStamper,
    StampingError,
    decode_drawn_signature,
)

__all__ = [
    "CertificateGenerator",
    "SignatureStamp",
    "SignatureStamper",
    "StampingError",
    "decode_drawn_signature",
]
