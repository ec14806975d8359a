"""
Charset Conversion and Detection
Turns bytes in an arbitrary charset into Python text

The converter is strict about charset *names* (an unknown name is a terminal
UnsupportedCharset error) but lenient about *bytes*: malformed sequences are
replaced with U+FFFD, the same way mail clients render them.

Detection is best-effort. When chardet cannot make a guess the bytes are
treated as already-canonical UTF-8 text instead of failing the message.
"""

import codecs
import logging
from typing import BinaryIO, Optional, Tuple

import chardet

from .errors import UnsupportedCharset


logger = logging.getLogger(__name__)

# gb2312 and gb18030 are decoded with the common-subset GBK codec
GBK_ALIASES = frozenset({"gb18030", "gb-18030", "gb2312"})

# Charsets that need no conversion and are not reported as "original"
CANONICAL_CHARSETS = frozenset({"utf_8", "ascii"})


def normalize_charset(name: str) -> str:
    """
    Normalize a declared charset name before registry lookup

    Example:
        >>> normalize_charset(" GB2312 ")
        'gbk'
        >>> normalize_charset("utf-8*en")
        'utf-8'
    """
    charset = name.strip().lower()
    # RFC 2231 allows a language suffix: charset*language
    charset = charset.split("*", 1)[0]
    if charset in GBK_ALIASES:
        return "gbk"
    return charset


def lookup_charset(name: str) -> codecs.CodecInfo:
    """
    Resolve a charset name through the codec registry

    Raises:
        UnsupportedCharset: If the name does not map to a known text codec
    """
    charset = normalize_charset(name)
    if not charset:
        raise UnsupportedCharset(name)
    try:
        info = codecs.lookup(charset)
    except LookupError as e:
        raise UnsupportedCharset(name) from e
    # rot13, base64_codec and friends are registered but are not charsets
    if not getattr(info, "_is_text_encoding", True):
        raise UnsupportedCharset(name)
    return info


def is_canonical(name: str) -> bool:
    """True when text in this charset needs no conversion"""
    try:
        return lookup_charset(name).name.replace("-", "_") in CANONICAL_CHARSETS
    except UnsupportedCharset:
        return False


def convert_to_utf8(data: bytes, charset: str) -> str:
    """Decode bytes declared in `charset` into text"""
    info = lookup_charset(charset)
    return info.decode(data, "replace")[0]


def open_utf8_reader(stream: BinaryIO, charset: str) -> codecs.StreamReader:
    """Wrap a binary stream in a reader that yields decoded text"""
    info = lookup_charset(charset)
    return info.streamreader(stream, "replace")


def detect_charset(data: bytes) -> Optional[str]:
    """
    Guess the charset of undeclared bytes

    Returns:
        Best-guess charset name, or None when detection fails
    """
    if not data:
        return None
    result = chardet.detect(data)
    encoding = result.get("encoding")
    if not encoding:
        return None
    logger.debug(
        f"Detected charset {encoding} (confidence {result.get('confidence', 0):.2f})"
    )
    return encoding


def resolve_body(
    data: bytes,
    declared: str = "",
    original: str = "",
    detect: bool = True
) -> Tuple[str, str]:
    """
    Apply the body charset policy

    An explicit charset (the part's own declaration, then the message-level
    original charset) wins. Without one, chardet's best guess is used. With no
    signal at all the bytes are taken as UTF-8.

    Args:
        data: Raw body bytes after transfer decoding
        declared: charset parameter of the body part, if any
        original: Message-level original charset, if any
        detect: Whether statistical detection may be used

    Returns:
        Tuple of (text, charset used or "" for the canonical fallback)

    Raises:
        UnsupportedCharset: If the chosen charset cannot be resolved
    """
    charset = declared or original
    if not charset and detect:
        charset = detect_charset(data) or ""
        if not charset:
            logger.warning("Charset detection failed; treating body as UTF-8")
    if not charset:
        return data.decode("utf-8", "replace"), ""
    return convert_to_utf8(data, charset), charset
