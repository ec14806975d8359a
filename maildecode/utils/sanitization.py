"""
Sanitization Utility Module
Makes untrusted message values safe to put into log records
"""

import re
import unicodedata
from typing import Union

# ANSI escape sequences (colors, cursor movement)
ANSI_ESCAPE_RE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")

DEFAULT_MAX_LOG_LENGTH = 255


def sanitize_for_logging(
    value: Union[str, bytes, None],
    max_length: int = DEFAULT_MAX_LOG_LENGTH
) -> str:
    """
    Sanitize a header, filename or error text before logging it

    SECURITY STORY: Subjects, filenames and addresses come straight from the
    sender. A CRLF inside them would forge extra log lines, and ANSI escapes
    would repaint the operator's terminal. Newlines are escaped, escapes and
    other control characters dropped, and the result truncated.

    Args:
        value: Untrusted text (bytes are decoded as UTF-8 with replacement)
        max_length: Maximum length before truncation

    Returns:
        Single-line printable string
    """
    if not value:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", "replace")

    text = unicodedata.normalize("NFKC", value)
    text = text.replace("\n", "\\n").replace("\r", "\\r")
    text = ANSI_ESCAPE_RE.sub("", text)
    # Tabs survive; every other C0 control and DEL goes
    text = "".join(ch for ch in text if ch == "\t" or (ord(ch) >= 32 and ch != "\x7f"))

    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text
