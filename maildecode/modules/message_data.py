"""
Message Data Model
Dataclasses holding the decoded form of a raw message
"""

from dataclasses import dataclass, field
from datetime import datetime
from email.utils import formataddr
from typing import Dict, List, Optional


@dataclass
class Address:
    """A single mailbox: optional display name plus local-part@domain"""
    name: str
    address: str

    def __str__(self) -> str:
        return formataddr((self.name, self.address))


@dataclass
class Attachment:
    """A user-facing file part, identified by its filename"""
    filename: str
    content_type: str
    data: bytes


@dataclass
class EmbeddedFile:
    """An inline part referenced from HTML bodies through cid: URLs"""
    cid: str
    content_type: str
    data: bytes


@dataclass
class Message:
    """
    Container for a decoded message

    Header names in `headers` are stored lower-cased; use get_header() and
    get_all_headers() for case-insensitive lookups. Only one of `content`,
    the single-part body or the multipart bodies is populated, depending on
    the top-level content type.
    """
    headers: Dict[str, List[str]] = field(default_factory=dict)

    subject: str = ""
    sender: Optional[Address] = None
    from_: List[Address] = field(default_factory=list)
    reply_to: List[Address] = field(default_factory=list)
    to: List[Address] = field(default_factory=list)
    cc: List[Address] = field(default_factory=list)
    bcc: List[Address] = field(default_factory=list)
    date: Optional[datetime] = None
    message_id: str = ""
    in_reply_to: List[str] = field(default_factory=list)
    references: List[str] = field(default_factory=list)

    resent_from: List[Address] = field(default_factory=list)
    resent_sender: Optional[Address] = None
    resent_to: List[Address] = field(default_factory=list)
    resent_date: Optional[datetime] = None
    resent_cc: List[Address] = field(default_factory=list)
    resent_bcc: List[Address] = field(default_factory=list)
    resent_message_id: str = ""

    content_type: str = ""
    content: Optional[bytes] = None

    text_body: str = ""
    html_body: str = ""

    attachments: List[Attachment] = field(default_factory=list)
    embedded_files: List[EmbeddedFile] = field(default_factory=list)

    original_charset: str = ""

    def get_header(self, name: str, default: str = "") -> str:
        """Return the first decoded value of a header"""
        values = self.headers.get(name.lower())
        if not values:
            return default
        return values[0]

    def get_all_headers(self, name: str) -> List[str]:
        """Return every decoded value of a header, in message order"""
        return list(self.headers.get(name.lower(), []))
