from bridgecore.security.redaction import (
    REDACTED,
    SENSITIVE_KEY_PARTS,
    mask_secret,
    redact_data,
    sanitize_mapping,
    sanitize_text,
)

__all__ = [
    "REDACTED",
    "SENSITIVE_KEY_PARTS",
    "mask_secret",
    "redact_data",
    "sanitize_mapping",
    "sanitize_text",
]
