"""Unit tests for log redaction."""
from roombook.middleware.logging import redact_secrets


def test_top_level_secret_masked():
    event = redact_secrets(None, "info", {"event": "x", "access_token": "abc", "amount": 10})

    assert event == {"event": "x", "access_token": "***", "amount": 10}


def test_nested_header_masked():
    event = redact_secrets(None, "info", {"event": "x", "headers": {"Asaas-Access-Token": "abc", "host": "h"}})

    assert event["headers"] == {"Asaas-Access-Token": "***", "host": "h"}
