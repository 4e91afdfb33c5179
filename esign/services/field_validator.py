"""Validation of signature field placement."""

from typing import Any, Iterable, List, Sequence, Set

from esign.models.signature import SignatureFieldType
from esign.utils.errors import FieldError, create_field_error

# Tolerance for float rounding at the page edge
EDGE_EPSILON = 1e-9

VALID_FIELD_TYPES = {t.value for t in SignatureFieldType}


class FieldPlacementValidator:
    """
    Checks fields against their recipients and the page bounds.

    Fields may be ORM rows or request schemas; anything exposing
    ``recipient_id``, ``page_number``, ``x_position``, ``y_position``,
    ``width``, ``height`` and ``field_type`` is accepted. Coordinates are
    fractions of the page with a top-left origin.
    """

    def validate(
        self,
        fields: Sequence[Any],
        recipients: Iterable[Any],
        require_coverage: bool = True,
    ) -> List[FieldError]:
        """
        Return every violation found. Never raises.

        Args:
            fields: Fields to check, in insertion order
            recipients: Recipient rows or plain recipient ids
            require_coverage: Also require at least one field per recipient
        """
        recipient_ids: Set[str] = {
            r if isinstance(r, str) else r.id for r in recipients
        }
        errors: List[FieldError] = []
        covered: Set[str] = set()

        for index, field in enumerate(fields):
            prefix = f"fields[{index}]"
            errors.extend(self._check_field(prefix, field, recipient_ids))
            if field.recipient_id in recipient_ids:
                covered.add(field.recipient_id)

        if require_coverage:
            for recipient_id in sorted(recipient_ids - covered):
                errors.append(
                    create_field_error(
                        "recipients",
                        f"Recipient {recipient_id} has no fields to sign",
                        code="no_fields",
                    )
                )

        return errors

    def _check_field(self, prefix: str, field: Any, recipient_ids: Set[str]) -> List[FieldError]:
        errors: List[FieldError] = []

        if field.recipient_id not in recipient_ids:
            errors.append(
                create_field_error(
                    f"{prefix}.recipient_id",
                    "Field is assigned to a recipient that is not on this request",
                    code="unknown_recipient",
                )
            )

        field_type = getattr(field.field_type, "value", field.field_type)
        if field_type not in VALID_FIELD_TYPES:
            errors.append(
                create_field_error(
                    f"{prefix}.field_type",
                    f"Unsupported field type: {field_type}",
                    code="invalid_choice",
                )
            )

        if field.page_number is None or field.page_number < 1:
            errors.append(
                create_field_error(f"{prefix}.page_number", "Page number must be 1 or greater")
            )

        x, y = field.x_position, field.y_position
        width, height = field.width, field.height

        for name, value in (("x_position", x), ("y_position", y)):
            if value is None or not 0.0 <= value <= 1.0:
                errors.append(
                    create_field_error(
                        f"{prefix}.{name}",
                        "Position must be between 0 and 1",
                        code="out_of_range",
                    )
                )

        for name, value in (("width", width), ("height", height)):
            if value is None or value <= 0.0:
                errors.append(
                    create_field_error(
                        f"{prefix}.{name}",
                        "Size must be greater than 0",
                        code="out_of_range",
                    )
                )

        if None not in (x, width) and width > 0 and x + width > 1.0 + EDGE_EPSILON:
            errors.append(
                create_field_error(
                    f"{prefix}.width",
                    "Field extends past the right edge of the page",
                    code="out_of_bounds",
                )
            )
        if None not in (y, height) and height > 0 and y + height > 1.0 + EDGE_EPSILON:
            errors.append(
                create_field_error(
                    f"{prefix}.height",
                    "Field extends past the bottom edge of the page",
                    code="out_of_bounds",
                )
            )

        return errors

    @staticmethod
    def sort_for_rendering(fields: Sequence[Any]) -> List[Any]:
        """Order by ``order_index``; fields sharing an index keep insertion order."""
        return [
            field
            for _, _, field in sorted(
                ((f.order_index or 0, i, f) for i, f in enumerate(fields)),
                key=lambda item: (item[0], item[1]),
            )
        ]
