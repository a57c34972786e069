"""Render declared records into PJSIP configuration text.

Each extension becomes three sections sharing its number as name:
endpoint, auth and aor.
"""
import logging

from ..declared.validator import RecordValidator
from ..errors import RenderError
from ..sync.schema import TRANSPORT_LABEL, ExtensionRecord

logger = logging.getLogger(__name__)


def _format_section(name: str, properties: list[tuple[str, str]]) -> str:
    lines = [f"[{name}]"]
    lines.extend(f"{key}={value}" for key, value in properties)
    return "\n".join(lines)


class PjsipRenderer:
    """Turn ExtensionRecords into pjsip.conf section bodies."""

    def __init__(self, bind: str = "0.0.0.0:5060"):
        self.bind = bind
        self.validator = RecordValidator()

    def render_section(self, record: ExtensionRecord) -> str:
        """
        Render endpoint, auth and aor sections for a record.

        Raises:
            RenderError: the record fails validation
        """
        validation = self.validator.validate(record)
        if not validation.valid:
            raise RenderError(record.number, validation.errors)
        for warning in validation.warnings:
            logger.warning(f"Extension {record.number}: {warning}")

        number = record.number

        endpoint = [
            ("type", "endpoint"),
            ("context", record.context),
            ("disallow", "all"),
        ]
        endpoint.extend(("allow", codec.strip()) for codec in record.codecs)
        endpoint.extend([
            ("transport", record.transport),
            ("auth", number),
            ("aors", number),
            ("direct_media", "yes" if record.direct_media else "no"),
        ])

        caller_id = self._caller_id(record)
        if caller_id:
            endpoint.append(("callerid", caller_id))
        if record.voicemail_enabled:
            endpoint.append(("mailboxes", f"{number}@default"))

        # Presence and device state
        endpoint.extend([
            ("subscribe_context", record.context),
            ("device_state_busy_at", "1"),
        ])

        auth = [
            ("type", "auth"),
            ("auth_type", "userpass"),
            ("username", number),
            ("password", record.secret),
        ]

        aor = [
            ("type", "aor"),
            ("max_contacts", str(record.max_contacts)),
            ("remove_existing", "yes"),
            ("qualify_frequency", str(record.qualify_frequency)),
            ("support_outbound", "yes"),
        ]

        return "\n\n".join([
            _format_section(number, endpoint),
            _format_section(number, auth),
            _format_section(number, aor),
        ])

    def _caller_id(self, record: ExtensionRecord) -> str:
        if record.caller_id:
            return record.caller_id
        if record.display_name:
            return f'"{record.display_name}" <{record.number}>'
        return ""

    def render_transports(self) -> str:
        """UDP and TCP transport sections."""
        udp = _format_section("transport-udp", [
            ("type", "transport"),
            ("protocol", "udp"),
            ("bind", self.bind),
            ("allow_reload", "yes"),
        ])
        tcp = _format_section("transport-tcp", [
            ("type", "transport"),
            ("protocol", "tcp"),
            ("bind", self.bind),
            ("allow_reload", "yes"),
        ])
        return f"{udp}\n\n{tcp}"
