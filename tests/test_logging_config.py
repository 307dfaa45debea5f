# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Tests for structured logging."""

import json
import logging
import sys

from certmint.logging_config import _JSONFormatter


def _record(**extra):
    record = logging.LogRecord(
        "certmint.store", logging.INFO, __file__, 10, "Production request created", None, None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_line_carries_extra_fields():
    line = _JSONFormatter().format(_record(request_id=4, producer="0xabc"))
    entry = json.loads(line)
    assert entry["level"] == "INFO"
    assert entry["logger"] == "certmint.store"
    assert entry["message"] == "Production request created"
    assert entry["request_id"] == 4
    assert entry["producer"] == "0xabc"
    assert "args" not in entry


def test_exception_serialized():
    try:
        raise ValueError("bad receipt")
    except ValueError:
        record = logging.LogRecord(
            "certmint.ledger", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
        )
    entry = json.loads(_JSONFormatter().format(record))
    assert "ValueError: bad receipt" in entry["exception"]
