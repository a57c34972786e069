"""Parse active PJSIP configuration into runtime snapshots.

Only active (uncommented) lines are read, so sections commented out by
the section store are invisible here. Sections belonging to one
extension may use alternative names:

    [101]        standard
    [101-auth]   suffix style (also 101_auth, 101auth)
    [auth101]    prefix style (also auth-101, auth_101)

Transports, trunks and other non-numeric sections are ignored.
"""
import logging
import re
from typing import Optional

from ..sync.schema import RuntimeSnapshot, extension_sort_key

logger = logging.getLogger(__name__)

_NUMERIC = re.compile(r"^\d+$")
_SUFFIXED = re.compile(r"^(\d+)[-_]?(auth|aor|endpoint)$")
_PREFIXED = re.compile(r"^(auth|aor|endpoint)[-_]?(\d+)$")
_HEADER = re.compile(r"^\[([^\]]+)\]")

EXTENSION_SECTION_TYPES = ("endpoint", "auth", "aor")


def extract_extension_number(section_name: str) -> Optional[str]:
    """
    Base extension number for a section name, or None for non-extension
    sections (transports, trunks, globals).
    """
    if _NUMERIC.match(section_name):
        return section_name

    match = _SUFFIXED.match(section_name)
    if match:
        return match.group(1)

    match = _PREFIXED.match(section_name)
    if match:
        return match.group(2)

    return None


def _parse_bool(value: str) -> Optional[bool]:
    lowered = value.strip().lower()
    if lowered in ("yes", "true", "on", "1"):
        return True
    if lowered in ("no", "false", "off", "0"):
        return False
    return None


def _parse_int(value: str) -> Optional[int]:
    try:
        return int(value.strip())
    except ValueError:
        return None


def _split_sections(content: str) -> list[tuple[str, list[tuple[str, str]]]]:
    sections: list[tuple[str, list[tuple[str, str]]]] = []
    current: Optional[list[tuple[str, str]]] = None

    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith(";"):
            continue

        header = _HEADER.match(line)
        if header:
            current = []
            sections.append((header.group(1).strip(), current))
            continue

        if current is None or "=" not in line:
            continue

        key, _, value = line.partition("=")
        value = value.lstrip(">")
        # Inline comment
        if ";" in value:
            value = value.split(";", 1)[0]
        current.append((key.strip().lower(), value.strip()))

    return sections


def parse_pjsip(content: str) -> list[RuntimeSnapshot]:
    """
    Extract one RuntimeSnapshot per extension that has an endpoint context.

    Fields not present in the configuration stay None.
    """
    snapshots: dict[str, RuntimeSnapshot] = {}

    for name, properties in _split_sections(content):
        number = extract_extension_number(name)
        if number is None:
            continue

        section_type = next((v for k, v in properties if k == "type"), "")
        if section_type not in EXTENSION_SECTION_TYPES:
            continue

        snapshot = snapshots.setdefault(number, RuntimeSnapshot(number=number))

        if section_type == "endpoint":
            _apply_endpoint(snapshot, properties)
        elif section_type == "auth":
            for key, value in properties:
                if key == "password":
                    snapshot.secret = value
        elif section_type == "aor":
            for key, value in properties:
                if key == "max_contacts":
                    snapshot.max_contacts = _parse_int(value)
                elif key == "qualify_frequency":
                    snapshot.qualify_frequency = _parse_int(value)

    result = [s for s in snapshots.values() if s.context]
    result.sort(key=lambda s: extension_sort_key(s.number))
    return result


def _apply_endpoint(snapshot: RuntimeSnapshot, properties: list[tuple[str, str]]) -> None:
    for key, value in properties:
        if key == "context":
            snapshot.context = value
        elif key == "transport":
            snapshot.transport = value
        elif key == "disallow" and value.lower() == "all":
            snapshot.codecs = []
        elif key == "allow":
            codecs = snapshot.codecs if snapshot.codecs is not None else []
            codecs.extend(c.strip() for c in value.split(",") if c.strip())
            snapshot.codecs = codecs
        elif key == "direct_media":
            snapshot.direct_media = _parse_bool(value)
        elif key == "callerid":
            snapshot.caller_id = value


_ENDPOINT_ROW = re.compile(r"^\s*Endpoint:\s+(?P<name>[^\s<][^\s/]*)\S*\s+(?P<rest>.*)$")
_UNREGISTERED_STATES = ("Unavailable", "Invalid", "Unknown")


def parse_endpoint_states(output: str) -> dict[str, bool]:
    """
    Registration state per numeric endpoint from `pjsip show endpoints`.

    An endpoint counts as registered unless its device state is
    Unavailable, Invalid or Unknown.
    """
    states: dict[str, bool] = {}
    for line in output.splitlines():
        match = _ENDPOINT_ROW.match(line)
        if not match:
            continue
        name = match.group("name")
        if not _NUMERIC.match(name):
            continue
        rest = match.group("rest")
        states[name] = not any(state in rest for state in _UNREGISTERED_STATES)
    return states
