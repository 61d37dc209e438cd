"""
Payload schemas and the canonical encoding helpers they rely on.
"""

from decimal import Decimal

import pytest

from landreg import schema
from landreg.core import b58decode, b58encode, canonical_digest, canonical_json_bytes
from landreg.errors import PreconditionFailed


VALID_SUBMISSION = {
    "survey_id": "SV-9",
    "location": "Plot 3",
    "category": "Commercial",
    "area": 1200,
    "area_unit": "sq yard",
}


class TestSchemas:

    @pytest.mark.parametrize("name", [schema.ASSET_SUBMISSION, schema.INSPECTION_REPORT, schema.TRANSFER_REQUEST])
    def test_schemas_are_valid_draft_2020_12(self, name):
        validator = schema.schema_validator(name)
        validator.check_schema(validator.schema)

    def test_valid_submission(self):
        assert schema.validate_against_schema(VALID_SUBMISSION, schema.ASSET_SUBMISSION) == []

    @pytest.mark.parametrize("change", [
        {"survey_id": ""},
        {"survey_id": "   "},
        {"area": "-3"},
        {"area": 1.5},
        {"area_unit": "hectare"},
        {"owner": "0x" + "1" * 40},
    ])
    def test_invalid_submission(self, change):
        payload = {**VALID_SUBMISSION, **change}
        assert schema.validate_against_schema(payload, schema.ASSET_SUBMISSION)

    def test_missing_required(self):
        payload = dict(VALID_SUBMISSION)
        del payload["location"]
        errors = schema.validate_against_schema(payload, schema.ASSET_SUBMISSION)
        assert any("location" in e for e in errors)

    def test_transfer_request_uses_shared_account_definition(self):
        ok = {"asset_id": 1, "to_account": "0x" + "Ab" * 20}
        assert schema.validate_against_schema(ok, schema.TRANSFER_REQUEST) == []
        bad = {"asset_id": 0, "to_account": "0x1234"}
        assert len(schema.validate_against_schema(bad, schema.TRANSFER_REQUEST)) == 2

    def test_report_checklist_is_closed(self):
        report = {"recommendation": "approve", "checklist": {"walked_perimeter": True}}
        assert schema.validate_against_schema(report, schema.INSPECTION_REPORT)

    def test_require_valid_raises(self):
        with pytest.raises(PreconditionFailed) as exc_info:
            schema.require_valid({"recommendation": "maybe"}, schema.INSPECTION_REPORT)
        assert "recommendation" in exc_info.value.message

    def test_unknown_schema(self):
        with pytest.raises(FileNotFoundError):
            schema.schema_validator("no-such-payload")


class TestCanonicalEncoding:

    def test_sorted_compact(self):
        assert canonical_json_bytes({"b": 1, "a": [2, "x"]}) == b'{"a":[2,"x"],"b":1}'

    def test_decimals_as_strings(self):
        assert canonical_json_bytes({"price": Decimal("10.50")}) == b'{"price":"10.50"}'

    def test_floats_rejected(self):
        with pytest.raises(ValueError):
            canonical_json_bytes({"area": 2.5})

    def test_digest_independent_of_key_order(self):
        assert canonical_digest({"a": 1, "b": 2}) == canonical_digest({"b": 2, "a": 1})

    def test_base58_leading_zeros(self):
        raw = b"\x00\x00\x12\x20" + b"\xff" * 4
        encoded = b58encode(raw)
        assert encoded.startswith("11")
        assert b58decode(encoded) == raw

    def test_base58_rejects_bad_alphabet(self):
        with pytest.raises(ValueError):
            b58decode("0OIl")
