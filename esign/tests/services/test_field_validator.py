"""Tests for signature field placement validation."""

from types import SimpleNamespace

import pytest

from esign.schemas.signature import FieldCreate
from esign.services.field_validator import FieldPlacementValidator


@pytest.fixture
def validator():
    return FieldPlacementValidator()


def make_field(recipient_id="r1", **overrides):
    values = dict(
        recipient_id=recipient_id,
        page_number=1,
        x_position=0.1,
        y_position=0.1,
        width=0.3,
        height=0.05,
    )
    values.update(overrides)
    return FieldCreate(**values)


class TestFieldPlacementValidator:
    """Test cases for FieldPlacementValidator."""

    def test_valid_fields_pass(self, validator):
        fields = [make_field("r1"), make_field("r2", y_position=0.5)]

        assert validator.validate(fields, ["r1", "r2"]) == []

    def test_field_touching_edges_is_allowed(self, validator):
        fields = [make_field(x_position=0.7, width=0.3, y_position=0.95, height=0.05)]

        assert validator.validate(fields, ["r1"]) == []

    def test_unknown_recipient(self, validator):
        errors = validator.validate([make_field("ghost")], ["r1"], require_coverage=False)

        assert [(e.field, e.code) for e in errors] == [("fields[0].recipient_id", "unknown_recipient")]

    def test_out_of_range_coordinates(self, validator):
        errors = validator.validate(
            [make_field(x_position=-0.1, y_position=1.5)],
            ["r1"],
        )

        fields = {e.field for e in errors}
        assert "fields[0].x_position" in fields
        assert "fields[0].y_position" in fields

    def test_non_positive_size(self, validator):
        errors = validator.validate([make_field(width=0, height=-0.2)], ["r1"])

        assert {(e.field, e.code) for e in errors} == {
            ("fields[0].width", "out_of_range"),
            ("fields[0].height", "out_of_range"),
        }

    def test_extends_past_page(self, validator):
        errors = validator.validate([make_field(x_position=0.8, width=0.3)], ["r1"])

        assert [(e.field, e.code) for e in errors] == [("fields[0].width", "out_of_bounds")]

    def test_page_number_must_be_positive(self, validator):
        errors = validator.validate([make_field(page_number=0)], ["r1"])

        assert errors[0].field == "fields[0].page_number"

    def test_every_recipient_needs_a_field(self, validator):
        errors = validator.validate([make_field("r1")], ["r1", "r2"])

        assert len(errors) == 1
        assert errors[0].code == "no_fields"
        assert "r2" in errors[0].message

    def test_coverage_can_be_skipped(self, validator):
        assert validator.validate([make_field("r1")], ["r1", "r2"], require_coverage=False) == []

    def test_all_problems_reported_together(self, validator):
        """Test the validator collects violations instead of stopping at the first."""
        fields = [
            make_field("ghost"),
            make_field("r1", x_position=2.0),
            make_field("r1", height=0),
        ]

        errors = validator.validate(fields, ["r1", "r2"])

        assert {e.field.split(".")[0] for e in errors if e.field != "recipients"} == {
            "fields[0]",
            "fields[1]",
            "fields[2]",
        }
        assert any(e.code == "no_fields" for e in errors)

    def test_accepts_recipient_rows(self, validator):
        recipients = [SimpleNamespace(id="r1")]

        assert validator.validate([make_field("r1")], recipients) == []


class TestRenderingOrder:
    def test_sort_is_stable_for_equal_order(self):
        fields = [
            SimpleNamespace(name="b", order_index=1),
            SimpleNamespace(name="a", order_index=0),
            SimpleNamespace(name="c", order_index=1),
            SimpleNamespace(name="d", order_index=None),
        ]

        ordered = FieldPlacementValidator.sort_for_rendering(fields)

        assert [f.name for f in ordered] == ["a", "d", "b", "c"]
