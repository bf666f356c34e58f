from __future__ import annotations

import json

import jsonschema
import pytest
from jsonschema.exceptions import ValidationError

from sheet_migrator.models.audit_record import (
    DUPLICATE,
    FIELD_ERROR,
    FIELD_WARNING,
    LOAD_FAILED,
    RUN_FAILED,
    AuditRecord,
)

"""Audit log JSON Lines contract: fixed key set, no extra keys."""

AUDIT_RECORD_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "required": ["timestamp", "entity", "row", "field", "kind", "message"],
    "properties": {
        "timestamp": {"type": "string", "pattern": "Z$"},
        "entity": {"type": "string"},
        "row": {"type": "integer", "minimum": -1},
        "field": {"type": "string"},
        "kind": {"enum": [FIELD_ERROR, FIELD_WARNING, DUPLICATE, LOAD_FAILED, RUN_FAILED]},
        "message": {"type": "string"},
    },
}


@pytest.mark.parametrize("kind", [FIELD_ERROR, FIELD_WARNING, DUPLICATE, LOAD_FAILED, RUN_FAILED])
def test_audit_record_lines_match_schema(kind):
    line = AuditRecord.create("customers", 2, "email", kind, "message").to_json_line()
    jsonschema.validate(json.loads(line), AUDIT_RECORD_SCHEMA)


def test_run_level_record_uses_unknown_row():
    record = json.loads(AuditRecord.create("<RUN>", -1, "", RUN_FAILED, "extracting: boom").to_json_line())
    jsonschema.validate(record, AUDIT_RECORD_SCHEMA)
    assert record["row"] == -1


def test_schema_rejects_extra_key():
    record = json.loads(AuditRecord.create("orders", 3, "", LOAD_FAILED, "x").to_json_line())
    record["extra"] = "not allowed"
    with pytest.raises(ValidationError):
        jsonschema.validate(record, AUDIT_RECORD_SCHEMA)
