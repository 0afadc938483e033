"""
Program-data payload extraction

Log formatting from RPC nodes is not uniform: the program id prefix may be
missing and payloads may arrive base64, URL-safe base64 or hex encoded.
Each payload is tried against the encodings in a fixed order and the first
one that yields a known message wins.
"""
import base64
import binascii
import re
from typing import Callable, Optional

from loguru import logger

from .messages import Message, parse_message


PROGRAM_DATA_PATTERN = re.compile(
    r"Program(?:\s+(?P<program>[1-9A-HJ-NP-Za-km-z]{32,44}))?\s+data:\s*(?P<payload>[A-Za-z0-9+/=_-]+)",
    re.IGNORECASE,
)


def extract_payloads(log_lines: list[str], program_id: Optional[str] = None) -> list[str]:
    """
    Pull encoded payloads out of program log lines

    Lines naming a different program are skipped; lines without a program
    id are accepted.

    Args:
        log_lines: Raw transaction log messages
        program_id: Protocol program id to accept

    Returns:
        Encoded payload strings in log order
    """
    payloads = []
    for line in log_lines:
        match = PROGRAM_DATA_PATTERN.search(line)
        if not match:
            continue
        program = match.group("program")
        if program and program_id and program != program_id:
            continue
        payloads.append(match.group("payload"))
    return payloads


def _b64_standard(text: str) -> bytes:
    return base64.b64decode(text, validate=True)


def _b64_urlsafe(text: str) -> bytes:
    padded = text.rstrip("=")
    padded += "=" * (-len(padded) % 4)
    return base64.urlsafe_b64decode(padded)


def _hex(text: str) -> bytes:
    return bytes.fromhex(text)


# Priority order matters: first success wins
PAYLOAD_DECODERS: list[tuple[str, Callable[[str], bytes]]] = [
    ("base64", _b64_standard),
    ("base64url", _b64_urlsafe),
    ("hex", _hex),
]


def decode_payload(text: str) -> Optional[Message]:
    """
    Decode one payload string into a message

    Returns:
        The first message any encoding variant yields, None if none does
    """
    for name, decode in PAYLOAD_DECODERS:
        try:
            raw = decode(text)
        except (binascii.Error, ValueError):
            continue

        message = parse_message(raw)
        if message is not None:
            if name != "base64":
                logger.debug(f"Payload decoded via {name} fallback")
            return message

    logger.debug(f"No decoder variant matched payload {text[:16]}...")
    return None


def decode_logs(log_lines: list[str], program_id: Optional[str] = None) -> list[Message]:
    """Decode every recognizable message in a transaction's logs"""
    messages = []
    for payload in extract_payloads(log_lines, program_id):
        message = decode_payload(payload)
        if message is not None:
            messages.append(message)
    return messages
