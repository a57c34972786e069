"""Validation for declared extension records.

Catches records that would produce a broken or unsafe config section
before anything is written.
"""
import re

from ..sync.schema import ExtensionRecord, ValidationResult

NUMBER_PATTERN = re.compile(r"^\d+$")
# Context and transport names end up inside key=value lines
NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")
CODEC_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")

KNOWN_CODECS = {
    "ulaw", "alaw", "g722", "g729", "gsm", "opus", "ilbc", "speex",
    "g726", "slin", "h264", "vp8",
}


class RecordValidator:
    """Validate an ExtensionRecord for logical errors."""

    def __init__(self, require_secret: bool = True):
        """
        Initialize validator.

        Args:
            require_secret: Reject enabled records without a secret.
                Records pulled from the runtime may lack one until an
                administrator sets it.
        """
        self.require_secret = require_secret

    def validate(self, record: ExtensionRecord) -> ValidationResult:
        """
        Validate a declared record.

        Performs checks:
        - Number is digits only
        - Context and transport are safe identifiers
        - Codec list is non-empty and well-formed
        - Numeric limits (max_contacts >= 1, qualify_frequency >= 0)
        - No line breaks in free-text fields

        Returns:
            ValidationResult with valid flag, errors, and warnings
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not NUMBER_PATTERN.match(record.number or ""):
            errors.append(f"Invalid extension number {record.number!r}: digits only")

        for name in ("context", "transport"):
            value = getattr(record, name)
            if not value or not NAME_PATTERN.match(value):
                errors.append(f"Invalid {name} {value!r}")

        self._validate_codecs(record, errors, warnings)

        if not isinstance(record.max_contacts, int) or record.max_contacts < 1:
            errors.append(f"max_contacts must be a positive integer, got {record.max_contacts!r}")

        if not isinstance(record.qualify_frequency, int) or record.qualify_frequency < 0:
            errors.append(
                f"qualify_frequency must be a non-negative integer, got {record.qualify_frequency!r}"
            )

        for name in ("display_name", "secret", "caller_id"):
            value = getattr(record, name) or ""
            if "\n" in value or "\r" in value:
                errors.append(f"{name} must not contain line breaks")

        if self.require_secret and record.enabled and not record.secret:
            errors.append("secret is required for an enabled extension")

        return ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings)

    def _validate_codecs(
        self,
        record: ExtensionRecord,
        errors: list[str],
        warnings: list[str],
    ) -> None:
        if not record.codecs:
            errors.append("At least one codec is required")
            return

        seen = set()
        for codec in record.codecs:
            if not CODEC_PATTERN.match(codec or ""):
                errors.append(f"Invalid codec {codec!r}")
                continue
            lowered = codec.lower()
            if lowered in seen:
                warnings.append(f"Codec {codec} listed more than once")
            seen.add(lowered)
            if lowered not in KNOWN_CODECS:
                warnings.append(f"Unknown codec {codec}")
