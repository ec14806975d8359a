"""
Content-Transfer-Encoding Decoder
Reverses the transport encoding of a body into raw bytes
"""

import base64
import binascii
import quopri

from .errors import TransferDecodingError, UnknownTransferEncoding


PASSTHROUGH_ENCODINGS = frozenset({"", "7bit", "8bit", "binary"})
QUOTED_PRINTABLE_ENCODINGS = frozenset({"quoted-printable", "quotedprintable"})


def decode_content(content: bytes, encoding: str) -> bytes:
    """
    Decode a body according to its Content-Transfer-Encoding

    The whole body is decoded eagerly; callers need random access for
    charset conversion afterwards.

    Args:
        content: Encoded body bytes
        encoding: Declared Content-Transfer-Encoding (may be empty)

    Returns:
        Decoded bytes

    Raises:
        UnknownTransferEncoding: For tokens other than base64, quoted-printable,
            7bit, 8bit and binary
        TransferDecodingError: If a base64 body is corrupt
    """
    enc = (encoding or "").strip().lower()

    if enc == "base64":
        # Line breaks are part of the transport format, anything else is not
        compact = b"".join(content.split())
        try:
            return base64.b64decode(compact, validate=True)
        except binascii.Error as e:
            raise TransferDecodingError("base64", str(e)) from e

    if enc in QUOTED_PRINTABLE_ENCODINGS:
        return quopri.decodestring(content)

    if enc in PASSTHROUGH_ENCODINGS:
        return bytes(content)

    raise UnknownTransferEncoding(encoding)
