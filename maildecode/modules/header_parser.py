"""
Header Field Parser
Turns the raw RFC 5322 header block into structured Message fields

Fields are parsed in a fixed order driven by HEADER_FIELDS. The first field
that fails raises HeaderSyntaxError and nothing after it is parsed.
"""

import base64
import binascii
import logging
import quopri
import re
from datetime import datetime
from email import errors as email_errors
from email.header import Header, decode_header
from email.headerregistry import HeaderRegistry
from email.message import Message as MIMEPart
from typing import Any, Callable, Dict, List, Optional, Tuple

from .charset import convert_to_utf8
from .errors import HeaderSyntaxError, UnsupportedCharset
from .message_data import Address, Message


logger = logging.getLogger(__name__)

FOLDING_RE = re.compile(r"[ \t]*\r?\n[ \t]+")
ENCODED_WORD_RE = re.compile(r"=\?([^?\s]+)\?([bBqQ])\?([^?\s]*)\?=")
SUBJECT_CHARSET_RE = re.compile(r"=\?([a-zA-Z0-9\-_]+)\?[bqBQ]\?", re.MULTILINE)
MEDIA_TYPE_RE = re.compile(r"^[!#$%&'*+.^_`|~0-9a-z-]+/[!#$%&'*+.^_`|~0-9a-z-]+$")
ZONE_COMMENT_RE = re.compile(r"^(.*\S)\s*\([^()]*\)$")

RFC5322_DATE_FORMAT = "%a, %d %b %Y %H:%M:%S %z"

# RFC 5322 section 4.3 obsolete zone names
OBSOLETE_ZONES = {
    "UT": "+0000", "GMT": "+0000", "Z": "+0000",
    "EST": "-0500", "EDT": "-0400",
    "CST": "-0600", "CDT": "-0500",
    "MST": "-0700", "MDT": "-0600",
    "PST": "-0800", "PDT": "-0700",
}

# Defects that do not make an address unusable
TOLERATED_ADDRESS_DEFECTS = (
    email_errors.ObsoleteHeaderDefect,
    email_errors.NonASCIILocalPartDefect,
)

_registry = HeaderRegistry()


def header_text(value: Any) -> str:
    """
    Convert a header value from the compat32 parser into text

    Values holding raw 8-bit bytes arrive wrapped in a Header object with the
    unknown-8bit charset; those bytes are re-read as UTF-8.
    """
    if value is None:
        return ""
    if isinstance(value, Header):
        return "".join(
            chunk.decode("utf-8", "replace") if isinstance(chunk, bytes) else chunk
            for chunk, _ in decode_header(value)
        )
    return str(value)


def unfold(value: str) -> str:
    """Join folded continuation lines and trim the value"""
    return FOLDING_RE.sub(" ", value).strip()


def raw_header(msg: MIMEPart, name: str) -> str:
    """First value of a header, unfolded; empty when absent"""
    return unfold(header_text(msg.get(name)))


def decode_encoded_word(word: str) -> Optional[str]:
    """
    Decode a single RFC 2047 encoded-word

    Returns:
        The decoded text, or None if `word` is not a decodable encoded-word
    """
    match = ENCODED_WORD_RE.fullmatch(word)
    if not match:
        return None
    charset, encoding, text = match.groups()
    try:
        payload = text.encode("ascii")
    except UnicodeEncodeError:
        return None

    if encoding in "bB":
        payload += b"=" * (-len(payload) % 4)
        try:
            data = base64.b64decode(payload, validate=True)
        except binascii.Error:
            return None
    else:
        data = quopri.decodestring(payload, header=True)

    try:
        return convert_to_utf8(data, charset)
    except UnsupportedCharset:
        logger.debug(f"Leaving encoded-word with unknown charset {charset} undecoded")
        return None


def decode_mime_sentence(value: str) -> str:
    """
    Decode every encoded-word in a space separated header value

    Words that are not encoded-words are kept literally. Adjacent
    encoded-words are joined without the space between them (RFC 2047 6.2).
    The space between a literal word and a following encoded-word is kept,
    unlike a strict reading that only restores spaces around undecodable
    words and would give "Re:café" below.

    Example:
        >>> decode_mime_sentence("Re: =?utf-8?q?caf=C3=A9?=")
        'Re: café'
    """
    result = []
    previous_decoded = False
    for index, word in enumerate(value.split(" ")):
        decoded = decode_encoded_word(word)
        if decoded is None:
            result.append(word if index == 0 else " " + word)
            previous_decoded = False
        else:
            if index > 0 and not previous_decoded:
                decoded = " " + decoded
            result.append(decoded)
            previous_decoded = True
    return "".join(result)


def decode_header_map(msg: MIMEPart) -> Dict[str, List[str]]:
    """Decode every header of a part, keyed by lower-cased name"""
    headers: Dict[str, List[str]] = {}
    for name, value in msg.items():
        decoded = decode_mime_sentence(unfold(header_text(value)))
        headers.setdefault(name.lower(), []).append(decoded)
    return headers


def subject_charset(subject: str) -> str:
    """Charset of the first encoded-word in a raw Subject, if any"""
    match = SUBJECT_CHARSET_RE.search(subject)
    if match:
        return match.group(1)
    return ""


def parse_address_list(field: str, value: str) -> List[Address]:
    """
    Parse a list of RFC 5322 mailboxes

    Blank values yield an empty list. Any syntax problem fails the whole
    header; partially valid lists are not recovered.

    Raises:
        HeaderSyntaxError: If the value is not a valid address list
    """
    if not value.strip():
        return []
    try:
        header = _registry(field, value)
    except (
        email_errors.HeaderParseError,
        # headerregistry can fail inside its own defect handling ("a@[")
        AttributeError,
        IndexError,
        TypeError,
        ValueError,
    ) as e:
        raise HeaderSyntaxError(field, str(e)) from e

    defects = [
        defect for defect in header.defects
        if not isinstance(defect, TOLERATED_ADDRESS_DEFECTS)
    ]
    if defects:
        raise HeaderSyntaxError(field, str(defects[0]))

    addresses = []
    for addr in header.addresses:
        if not addr.username or not addr.domain:
            raise HeaderSyntaxError(field, f"invalid mailbox {addr.addr_spec!r}")
        addresses.append(Address(name=addr.display_name, address=addr.addr_spec))
    return addresses


def parse_address(field: str, value: str) -> Optional[Address]:
    """Parse a header that must hold exactly one mailbox"""
    addresses = parse_address_list(field, value)
    if not addresses:
        if value.strip():
            raise HeaderSyntaxError(field, "no mailbox found")
        return None
    if len(addresses) > 1:
        raise HeaderSyntaxError(field, f"expected one mailbox, got {len(addresses)}")
    return addresses[0]


def _parse_numeric_zone(value: str) -> datetime:
    return datetime.strptime(value, RFC5322_DATE_FORMAT)


def _parse_named_zone(value: str) -> datetime:
    head, _, zone = value.rpartition(" ")
    offset = OBSOLETE_ZONES.get(zone.upper())
    if offset is None:
        raise ValueError(f"unknown time zone {zone!r}")
    return datetime.strptime(f"{head} {offset}", RFC5322_DATE_FORMAT)


def _with_zone_comment(layout: Callable[[str], datetime]) -> Callable[[str], datetime]:
    def parse(value: str) -> datetime:
        match = ZONE_COMMENT_RE.match(value)
        if not match:
            raise ValueError(f"no zone comment in {value!r}")
        return layout(match.group(1))
    return parse


DATE_LAYOUTS: Tuple[Callable[[str], datetime], ...] = (
    _parse_numeric_zone,
    _parse_named_zone,
    _with_zone_comment(_parse_numeric_zone),
    _with_zone_comment(_parse_named_zone),
)


def parse_date(field: str, value: str) -> Optional[datetime]:
    """
    Parse an RFC 5322 date, trying each layout of DATE_LAYOUTS in order

    Raises:
        HeaderSyntaxError: With the error of the last layout if none match
    """
    if not value:
        return None
    error: Optional[ValueError] = None
    for layout in DATE_LAYOUTS:
        try:
            return layout(value)
        except ValueError as e:
            error = e
    raise HeaderSyntaxError(field, str(error)) from error


def parse_message_id(value: str) -> str:
    """Strip whitespace and angle brackets; no further validation"""
    return value.strip("<> \t\r\n")


def parse_message_id_list(value: str) -> List[str]:
    return [parse_message_id(token) for token in value.split() if token.strip()]


def content_media_type(part: MIMEPart) -> str:
    """
    Lower-cased media type of a part, without parameters

    A missing Content-Type falls back to the container default
    (text/plain, or message/rfc822 inside multipart/digest).

    Raises:
        HeaderSyntaxError: If the declared value is not of the form type/subtype
    """
    raw = raw_header(part, "Content-Type")
    if not raw:
        return part.get_default_type()
    media_type = raw.split(";", 1)[0].strip().lower()
    if not MEDIA_TYPE_RE.match(media_type):
        raise HeaderSyntaxError("Content-Type", f"invalid media type {media_type!r}")
    return media_type


def _sentence(field: str, value: str) -> str:
    return decode_mime_sentence(value)


def _message_id(field: str, value: str) -> str:
    return parse_message_id(value)


def _message_id_list(field: str, value: str) -> List[str]:
    return parse_message_id_list(value)


# (Message attribute, header name, parser) in processing order
HEADER_FIELDS: Tuple[Tuple[str, str, Callable[[str, str], Any]], ...] = (
    ("subject", "Subject", _sentence),
    ("from_", "From", parse_address_list),
    ("sender", "Sender", parse_address),
    ("reply_to", "Reply-To", parse_address_list),
    ("to", "To", parse_address_list),
    ("cc", "Cc", parse_address_list),
    ("bcc", "Bcc", parse_address_list),
    ("date", "Date", parse_date),
    ("resent_from", "Resent-From", parse_address_list),
    ("resent_sender", "Resent-Sender", parse_address),
    ("resent_to", "Resent-To", parse_address_list),
    ("resent_cc", "Resent-Cc", parse_address_list),
    ("resent_bcc", "Resent-Bcc", parse_address_list),
    ("resent_message_id", "Resent-Message-ID", _message_id),
    ("message_id", "Message-ID", _message_id),
    ("in_reply_to", "In-Reply-To", _message_id_list),
    ("references", "References", _message_id_list),
    ("resent_date", "Resent-Date", parse_date),
)


def message_from_headers(msg: MIMEPart) -> Message:
    """
    Build a Message carrying every structured header field

    Args:
        msg: Top-level part from the standard library parser

    Returns:
        Message with header fields populated and bodies still empty

    Raises:
        HeaderSyntaxError: For the first field that fails to parse
    """
    message = Message()
    message.original_charset = subject_charset(raw_header(msg, "Subject"))

    for attribute, name, parse in HEADER_FIELDS:
        setattr(message, attribute, parse(name, raw_header(msg, name)))

    message.headers = decode_header_map(msg)
    return message
