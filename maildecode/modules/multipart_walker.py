"""
Multipart Tree Walker
Recursively decodes multipart/mixed, multipart/alternative and
multipart/related bodies

PATTERN RECOGNITION: Three mutually recursive entry points, one per container
kind. Each iterates its child parts in declaration order and dispatches on the
child's content type:

  1. text/plain, text/html       -> body accumulators
  2. nested multipart container  -> recurse, then merge
  3. filename declared           -> Attachment
     transfer encoding declared  -> EmbeddedFile
  4. anything else               -> UnknownContentType

SECURITY STORY: MIME nesting is attacker controlled. Every recursion step
increments a depth counter and the walk fails with NestingDepthExceeded once
it passes max_depth, instead of growing the stack without bound.
"""

import logging
from dataclasses import dataclass, field
from email import errors as email_errors
from email.message import Message as MIMEPart
from email.utils import collapse_rfc2231_value
from typing import Callable, Dict, List

from .content_decoder import decode_content
from .errors import MultipartSyntaxError, NestingDepthExceeded, UnknownContentType
from .header_parser import (
    content_media_type,
    decode_mime_sentence,
    header_text,
    raw_header,
)
from .message_data import Attachment, EmbeddedFile
from ..utils.sanitization import sanitize_for_logging


logger = logging.getLogger(__name__)

DEFAULT_MAX_NESTING_DEPTH = 32

MIXED = "mixed"
ALTERNATIVE = "alternative"
RELATED = "related"

TEXT_PLAIN = "text/plain"
TEXT_HTML = "text/html"

# Defects recorded on a multipart container whose framing is broken
FRAMING_DEFECTS = (
    email_errors.NoBoundaryInMultipartDefect,
    email_errors.StartBoundaryNotFoundDefect,
    email_errors.CloseBoundaryNotFoundDefect,
    email_errors.MultipartInvariantViolationDefect,
)

# Defects recorded on a part whose own header block is broken
PART_HEADER_DEFECTS = (
    email_errors.MissingHeaderBodySeparatorDefect,
    email_errors.FirstHeaderLineIsContinuationDefect,
)


@dataclass
class WalkResult:
    """Accumulators filled while walking one multipart container"""
    text_parts: List[bytes] = field(default_factory=list)
    html_parts: List[bytes] = field(default_factory=list)
    text_charset: str = ""
    html_charset: str = ""
    attachments: List[Attachment] = field(default_factory=list)
    embedded_files: List[EmbeddedFile] = field(default_factory=list)

    @property
    def text_body(self) -> bytes:
        return b"".join(self.text_parts)

    @property
    def html_body(self) -> bytes:
        return b"".join(self.html_parts)

    def add_text(self, data: bytes, charset: str) -> None:
        self.text_parts.append(data)
        self.text_charset = self.text_charset or charset

    def add_html(self, data: bytes, charset: str) -> None:
        self.html_parts.append(data)
        self.html_charset = self.html_charset or charset

    def merge(self, nested: "WalkResult", replace_bodies: bool = False) -> None:
        """
        Fold the result of a nested container into this one

        Args:
            nested: Result of the nested walk
            replace_bodies: Replace the bodies instead of concatenating
                (multipart/mixed semantics)
        """
        if replace_bodies:
            self.text_parts = list(nested.text_parts)
            self.html_parts = list(nested.html_parts)
            self.text_charset = nested.text_charset
            self.html_charset = nested.html_charset
        else:
            self.text_parts.extend(nested.text_parts)
            self.html_parts.extend(nested.html_parts)
            self.text_charset = self.text_charset or nested.text_charset
            self.html_charset = self.html_charset or nested.html_charset
        self.attachments.extend(nested.attachments)
        self.embedded_files.extend(nested.embedded_files)


def part_payload_bytes(part: MIMEPart) -> bytes:
    """
    Raw (still transfer-encoded) body bytes of a part

    The parser keeps 8-bit body bytes as surrogate escapes in the stored
    payload. get_payload() re-decodes them through the charset parameter, so
    the stored string is encoded back here instead, byte for byte. Parts the
    parser has split further (message/rfc822, unknown multipart kinds) are
    regenerated.
    """
    payload = part.get_payload()
    if payload is None:
        return b""
    if isinstance(payload, list):
        _, _, body = part.as_bytes().partition(b"\n\n")
        return body
    return part._payload.encode("utf-8", "surrogateescape")


def decode_part_body(part: MIMEPart) -> bytes:
    """Body bytes of a part with its Content-Transfer-Encoding reversed"""
    return decode_content(
        part_payload_bytes(part),
        raw_header(part, "Content-Transfer-Encoding"),
    )


def trim_trailing_newline(data: bytes) -> bytes:
    """Remove exactly one trailing line ending, if present"""
    if data.endswith(b"\r\n"):
        return data[:-2]
    if data.endswith(b"\n"):
        return data[:-1]
    return data


def part_filename(part: MIMEPart) -> str:
    """
    Filename parameter of Content-Disposition, RFC 2231 collapsed

    The Content-Type name parameter is deliberately not consulted: inline
    images in multipart/related often carry one and must stay embedded files.
    """
    filename = part.get_param("filename", None, header="content-disposition")
    if filename is None:
        return ""
    return header_text(collapse_rfc2231_value(filename)).strip()


def is_attachment(part: MIMEPart) -> bool:
    return bool(part_filename(part))


def is_embedded_file(part: MIMEPart) -> bool:
    return bool(raw_header(part, "Content-Transfer-Encoding"))


def decode_attachment(part: MIMEPart) -> Attachment:
    filename = decode_mime_sentence(part_filename(part))
    return Attachment(
        filename=filename,
        content_type=content_media_type(part),
        data=decode_part_body(part),
    )


def decode_embedded_file(part: MIMEPart) -> EmbeddedFile:
    cid = decode_mime_sentence(raw_header(part, "Content-Id"))
    return EmbeddedFile(
        cid=cid.strip("<>"),
        content_type=raw_header(part, "Content-Type"),
        data=decode_part_body(part),
    )


class MultipartWalker:
    """
    Walks a parsed MIME tree and aggregates bodies, attachments and
    embedded files

    A walker holds no per-message state, so one instance can serve any
    number of decode calls.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_NESTING_DEPTH):
        """
        Args:
            max_depth: Deepest allowed multipart nesting; the top-level
                container is depth 1
        """
        self.max_depth = max_depth
        self._entry_points: Dict[str, Callable[[MIMEPart, int], WalkResult]] = {
            f"multipart/{MIXED}": self.walk_mixed,
            f"multipart/{ALTERNATIVE}": self.walk_alternative,
            f"multipart/{RELATED}": self.walk_related,
        }

    def handles(self, media_type: str) -> bool:
        """True if media_type is a container kind this walker descends into"""
        return media_type in self._entry_points

    def walk(self, container: MIMEPart, media_type: str, depth: int = 1) -> WalkResult:
        """Dispatch to the entry point matching media_type"""
        return self._entry_points[media_type](container, depth)

    def walk_mixed(self, container: MIMEPart, depth: int = 1) -> WalkResult:
        return self._walk(container, MIXED, depth)

    def walk_alternative(self, container: MIMEPart, depth: int = 1) -> WalkResult:
        return self._walk(container, ALTERNATIVE, depth)

    def walk_related(self, container: MIMEPart, depth: int = 1) -> WalkResult:
        return self._walk(container, RELATED, depth)

    def _walk(self, container: MIMEPart, kind: str, depth: int) -> WalkResult:
        if depth > self.max_depth:
            raise NestingDepthExceeded(depth, self.max_depth)

        result = WalkResult()
        for part in self._child_parts(container, kind):
            media_type = content_media_type(part)

            if media_type == TEXT_PLAIN:
                body = trim_trailing_newline(decode_part_body(part))
                result.add_text(body, part.get_content_charset() or "")

            elif media_type == TEXT_HTML:
                body = trim_trailing_newline(decode_part_body(part))
                result.add_html(body, part.get_content_charset() or "")

            elif self.handles(media_type):
                nested = self.walk(part, media_type, depth + 1)
                # In mixed, a nested group supplies the message bodies
                result.merge(nested, replace_bodies=(kind == MIXED))

            elif is_attachment(part):
                attachment = decode_attachment(part)
                logger.debug(
                    f"Attachment {sanitize_for_logging(attachment.filename)} "
                    f"({attachment.content_type}, {len(attachment.data)} bytes)"
                )
                result.attachments.append(attachment)

            elif is_embedded_file(part):
                embedded = decode_embedded_file(part)
                logger.debug(
                    f"Embedded file cid={sanitize_for_logging(embedded.cid)} "
                    f"({len(embedded.data)} bytes)"
                )
                result.embedded_files.append(embedded)

            else:
                raise UnknownContentType(media_type, kind)

        return result

    @staticmethod
    def _child_parts(container: MIMEPart, kind: str) -> List[MIMEPart]:
        for defect in container.defects:
            if isinstance(defect, FRAMING_DEFECTS):
                raise MultipartSyntaxError(kind, type(defect).__name__)

        payload = container.get_payload()
        if not isinstance(payload, list):
            raise MultipartSyntaxError(kind, "body is not split into parts")

        for part in payload:
            for defect in part.defects:
                if isinstance(defect, PART_HEADER_DEFECTS):
                    raise MultipartSyntaxError(kind, type(defect).__name__)
        return payload
