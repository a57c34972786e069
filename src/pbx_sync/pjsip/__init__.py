"""PJSIP (Asterisk) collaborators: rendering, parsing, probing and reload."""
from .renderer import PjsipRenderer, TRANSPORT_LABEL
from .parser import parse_pjsip, parse_endpoint_states, extract_extension_number
from .asterisk import AsteriskCLI, AsteriskCommandError
from .probe import PjsipProbe

__all__ = [
    "PjsipRenderer",
    "TRANSPORT_LABEL",
    "parse_pjsip",
    "parse_endpoint_states",
    "extract_extension_number",
    "AsteriskCLI",
    "AsteriskCommandError",
    "PjsipProbe",
]
