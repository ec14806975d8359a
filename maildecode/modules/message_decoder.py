"""
Message Decoder Module
Decodes raw RFC 5322 message bytes into structured Message objects

PATTERN RECOGNITION: This follows the Parser pattern - it takes unstructured
data (raw message bytes) and transforms it into a structured object (Message).

SECURITY STORY: The bytes handed over after SMTP DATA are untrusted and often
malformed. Every step either completes or raises a DecodeError; there is no
partial message. The caller rejects the message on any DecodeError.

Steps:
  1. Split header block and MIME tree (standard library parser)
  2. Parse structured header fields
  3. Dispatch on the top-level content type
  4. Resolve the charset of the text and HTML bodies
"""

import email
import logging
from email import errors as email_errors
from email.message import Message as MIMEPart
from email.policy import compat32
from typing import Optional, Tuple

from .charset import is_canonical, resolve_body
from .errors import DecodeError, MalformedMessageError, NestingDepthExceeded
from .header_parser import content_media_type, message_from_headers, raw_header
from .message_data import Message
from .multipart_walker import (
    TEXT_HTML,
    TEXT_PLAIN,
    MultipartWalker,
    decode_part_body,
    trim_trailing_newline,
)
from ..utils.config import DecoderConfig
from ..utils.sanitization import sanitize_for_logging


logger = logging.getLogger(__name__)

# Defects meaning the top-level header block could not be parsed
HEADER_BLOCK_DEFECTS = (
    email_errors.MissingHeaderBodySeparatorDefect,
    email_errors.FirstHeaderLineIsContinuationDefect,
)


class MessageDecoder:
    """
    Decodes raw message bytes into Message objects

    MAINTENANCE WISDOM: Keep decoding separate from I/O (the SMTP session).
    Tests can feed literal byte strings without a running server.
    """

    def __init__(self, config: Optional[DecoderConfig] = None):
        """
        Initialize message decoder

        Args:
            config: Decoder configuration (nesting limit, charset detection)
        """
        self.config = config or DecoderConfig()
        self.walker = MultipartWalker(max_depth=self.config.max_nesting_depth)
        self.logger = logger

    def decode(self, raw: bytes) -> Message:
        """
        Decode one complete message

        Args:
            raw: Message bytes as received after the SMTP DATA phase

        Returns:
            Fully populated Message

        Raises:
            DecodeError: Any structural, header, encoding or charset error
        """
        try:
            msg = self._parse_structure(raw)
            message = message_from_headers(msg)
            self._decode_body(msg, message)
        except DecodeError as e:
            self.logger.debug(f"Decode failed ({type(e).__name__}): {sanitize_for_logging(str(e))}")
            raise

        self.logger.debug(
            f"Decoded message {sanitize_for_logging(message.message_id)}: "
            f"{len(message.attachments)} attachments, "
            f"{len(message.embedded_files)} embedded files"
        )
        return message

    def _parse_structure(self, raw: bytes) -> MIMEPart:
        """
        Split the raw bytes into a header block and MIME tree

        Raises:
            MalformedMessageError: Empty input or unparsable header block
            NestingDepthExceeded: Nesting too deep for the parser itself
        """
        if not raw:
            raise MalformedMessageError("empty message")
        try:
            msg = email.message_from_bytes(bytes(raw), policy=compat32)
        except RecursionError as e:
            raise NestingDepthExceeded(None, self.config.max_nesting_depth) from e

        for defect in msg.defects:
            if isinstance(defect, HEADER_BLOCK_DEFECTS):
                raise MalformedMessageError(
                    f"unparsable header block ({type(defect).__name__})"
                )
        return msg

    def _decode_body(self, msg: MIMEPart, message: Message) -> None:
        """Dispatch on the top-level content type and fill the bodies"""
        message.content_type = raw_header(msg, "Content-Type")
        media_type = content_media_type(msg)

        text, text_charset = b"", ""
        html, html_charset = b"", ""

        if self.walker.handles(media_type):
            result = self.walker.walk(msg, media_type)
            text, text_charset = result.text_body, result.text_charset
            html, html_charset = result.html_body, result.html_charset
            message.attachments = result.attachments
            message.embedded_files = result.embedded_files
        elif media_type == TEXT_PLAIN:
            text = trim_trailing_newline(decode_part_body(msg))
            text_charset = msg.get_content_charset() or ""
        elif media_type == TEXT_HTML:
            html = trim_trailing_newline(decode_part_body(msg))
            html_charset = msg.get_content_charset() or ""
        else:
            message.content = decode_part_body(msg)

        self._resolve_charsets(message, (text, text_charset), (html, html_charset))

    def _resolve_charsets(
        self,
        message: Message,
        text: Tuple[bytes, str],
        html: Tuple[bytes, str]
    ) -> None:
        """
        Convert the assembled bodies to text and record the original charset

        Attachment and embedded file bytes are never converted.
        """
        original = message.original_charset
        used = []

        if text[0]:
            message.text_body, charset = resolve_body(
                text[0], text[1], original, self.config.detect_charset
            )
            used.append(charset)
        if html[0]:
            message.html_body, charset = resolve_body(
                html[0], html[1], original, self.config.detect_charset
            )
            used.append(charset)

        if not original:
            original = next((charset for charset in used if charset), "")
        message.original_charset = "" if is_canonical(original) else original


def decode(raw: bytes, config: Optional[DecoderConfig] = None) -> Message:
    """
    Decode raw message bytes with a one-off decoder

    Args:
        raw: Complete message bytes
        config: Optional decoder configuration

    Returns:
        Decoded Message

    Raises:
        DecodeError: If the message cannot be decoded
    """
    return MessageDecoder(config).decode(raw)
