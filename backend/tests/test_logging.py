import logging

from familyhub.core.logging import RedactSecretsFilter, mask_token, redact

DEVICE_TOKEN = "a1b2c3d4" + "0" * 56


def test_mask_token():
    assert mask_token(DEVICE_TOKEN) == "a1b2c3d4..."
    assert mask_token("") == ""


def test_redact_device_tokens_and_bearer_values():
    text = f"POST https://api.push.apple.com/3/device/{DEVICE_TOKEN} Authorization: Bearer eyJhbGciOi.abc.def"

    cleaned = redact(text)

    assert DEVICE_TOKEN not in cleaned
    assert "/3/device/a1b2c3d4..." in cleaned
    assert "Bearer [redacted]" in cleaned


def test_filter_rewrites_record_once_formatted():
    record = logging.LogRecord("test", logging.INFO, __file__, 1, "Sending to %s", (DEVICE_TOKEN,), None)

    assert RedactSecretsFilter().filter(record) is True
    assert record.getMessage() == "Sending to a1b2c3d4..."


def test_filter_leaves_clean_records_alone():
    record = logging.LogRecord("test", logging.INFO, __file__, 1, "Sent %d reminders", (3,), None)

    RedactSecretsFilter().filter(record)

    assert record.args == (3,)
    assert record.getMessage() == "Sent 3 reminders"
