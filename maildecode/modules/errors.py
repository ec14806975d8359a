"""
Decode Errors
Exception hierarchy raised while decoding a raw message

Every error is terminal for the message being decoded: there is no partial
result. Callers catch DecodeError to reject the whole message.
"""

from typing import Optional


class DecodeError(Exception):
    """Base class for every error raised by the decoder"""


class MalformedMessageError(DecodeError):
    """The top-level header block could not be parsed at all"""


class HeaderSyntaxError(DecodeError):
    """A structured header field (address, date, content-type) is malformed"""

    def __init__(self, field: str, detail: str = ""):
        self.field = field
        self.detail = detail
        message = f"malformed {field} header"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UnknownContentType(DecodeError):
    """
    A part could not be classified

    context is "top-level" or the enclosing multipart kind
    ("mixed", "alternative", "related").
    """

    def __init__(self, content_type: str, context: str):
        self.content_type = content_type
        self.context = context
        if context == "top-level":
            message = f"unknown top-level mime type: {content_type}"
        else:
            message = f"can't process multipart/{context} inner mime type: {content_type}"
        super().__init__(message)


class UnknownTransferEncoding(DecodeError):
    """The Content-Transfer-Encoding token is not supported"""

    def __init__(self, encoding: str):
        self.encoding = encoding
        super().__init__(f"unknown encoding: {encoding}")


class TransferDecodingError(DecodeError):
    """The body is not valid for its declared transfer encoding"""

    def __init__(self, encoding: str, detail: str = ""):
        self.encoding = encoding
        message = f"invalid {encoding} content"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class MultipartSyntaxError(DecodeError):
    """Boundary or part framing of a multipart body is broken"""

    def __init__(self, kind: str, detail: str):
        self.kind = kind
        self.detail = detail
        super().__init__(f"malformed multipart/{kind} body: {detail}")


class NestingDepthExceeded(DecodeError):
    """Multipart containers are nested deeper than the configured limit"""

    def __init__(self, depth: Optional[int], limit: int):
        self.depth = depth
        self.limit = limit
        if depth is None:
            message = f"multipart nesting too deep to parse (limit {limit})"
        else:
            message = f"multipart nesting depth {depth} exceeds limit {limit}"
        super().__init__(message)


class UnsupportedCharset(DecodeError):
    """The charset name does not resolve to a known codec"""

    def __init__(self, charset: str):
        self.charset = charset
        super().__init__(f"unsupported charset: {charset}")
