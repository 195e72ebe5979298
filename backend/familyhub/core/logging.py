import logging
import os
import re
from logging.config import dictConfig

# APNs device tokens are 64 hex characters; bearer values cover cron secrets and JWTs
_DEVICE_TOKEN_RE = re.compile(r"\b([0-9a-fA-F]{8})[0-9a-fA-F]{56}\b")
_BEARER_RE = re.compile(r"(?i)(bearer\s+)[^\s\"']+")


def mask_token(token: str, visible: int = 8) -> str:
    if not token:
        return ""
    return f"{token[:visible]}..."


def redact(text: str) -> str:
    text = _DEVICE_TOKEN_RE.sub(r"\1...", text)
    return _BEARER_RE.sub(r"\1[redacted]", text)


class RedactSecretsFilter(logging.Filter):
    """Scrubs device tokens and bearer credentials from the formatted message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def configure_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"redact": {"()": RedactSecretsFilter}},
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S%z",
                }
            },
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["redact"],
                    "level": level,
                }
            },
            "loggers": {
                "uvicorn.access": {"handlers": ["stdout"], "level": level, "propagate": False},
                # httpx logs every request URL at INFO, and APNs URLs end in the device token
                "httpx": {"level": "WARNING"},
                "apscheduler": {"level": "WARNING"},
            },
            "root": {"handlers": ["stdout"], "level": level},
        }
    )
    logging.getLogger(__name__).debug(f"Logging configured at {level}")


__all__ = ["RedactSecretsFilter", "configure_logging", "mask_token", "redact"]
