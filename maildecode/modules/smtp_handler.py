"""SMTP handler that decodes each accepted message.

Implements an aiosmtpd handler. The SMTP session itself (connection
lifecycle, MAIL/RCPT, size limits) stays with aiosmtpd; this module only sees
the complete DATA payload, decodes it and hands the result to a pluggable
message handler.

A DecodeError rejects that one message with a permanent 554 reply so the
sender gets a bounce instead of a silent partial delivery.
"""

import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from aiosmtpd.controller import Controller
from aiosmtpd.smtp import SMTP, Envelope, Session

from .errors import DecodeError
from .message_data import Message
from .message_decoder import MessageDecoder
from ..utils.config import SMTPConfig
from ..utils.metrics import DecodeMetrics
from ..utils.sanitization import sanitize_for_logging

logger = logging.getLogger(__name__)

MAX_REPLY_DETAIL = 200


@dataclass
class InboundMessage:
    """Everything the message handler gets for one accepted message."""

    mail_from: str
    rcpt_tos: List[str]
    message: Message
    raw: bytes
    peer: Optional[Tuple[str, int]] = None
    received_at: float = field(default_factory=time.time)


MessageHandler = Callable[[InboundMessage], Union[None, Awaitable[None]]]


class DecodingSMTPHandler:
    """aiosmtpd handler decoding the DATA payload of every message.

    Replies:
        '250 OK' - decoded and handled
        '554 5.6.0 ...' - message could not be decoded (permanent)
        '451 4.3.0 ...' - message handler failed (sender retries)
        '451 4.3.5 ...' - no message handler configured
    """

    def __init__(
        self,
        message_handler: Optional[MessageHandler],
        decoder: Optional[MessageDecoder] = None,
        metrics: Optional[DecodeMetrics] = None,
    ):
        """Initialize SMTP handler.

        Args:
            message_handler: Callable invoked with an InboundMessage; may be
                a coroutine function
            decoder: Decoder to use (default configuration if omitted)
            metrics: Metrics collector (a fresh one if omitted)
        """
        self.message_handler = message_handler
        self.decoder = decoder or MessageDecoder()
        self.metrics = metrics or DecodeMetrics()

    async def handle_DATA(
        self,
        server: SMTP,
        session: Session,
        envelope: Envelope,
    ) -> str:
        """Handle the DATA command (aiosmtpd entry point).

        Args:
            server: SMTP server instance
            session: SMTP session
            envelope: Envelope with sender, recipients and raw content

        Returns:
            str: SMTP reply line
        """
        if self.message_handler is None:
            logger.error("Message received but no message handler is configured")
            return '451 4.3.5 No message handler configured'

        raw = envelope.content or b""
        if isinstance(raw, str):
            raw = raw.encode("utf-8", "surrogateescape")
        mail_from = sanitize_for_logging(envelope.mail_from or "")

        started = time.perf_counter()
        try:
            message = self.decoder.decode(raw)
        except DecodeError as e:
            kind = type(e).__name__
            detail = sanitize_for_logging(str(e), MAX_REPLY_DETAIL)
            self.metrics.record_rejected(kind)
            logger.warning(
                f"Rejected message from {mail_from}: {kind}: {detail}",
                extra={"extra_fields": {"mail_from": mail_from, "error_kind": kind}},
            )
            return f'554 5.6.0 Message rejected: {detail}'
        elapsed_ms = (time.perf_counter() - started) * 1000

        inbound = InboundMessage(
            mail_from=envelope.mail_from or "",
            rcpt_tos=list(envelope.rcpt_tos),
            message=message,
            raw=raw,
            peer=getattr(session, "peer", None),
        )

        try:
            result: Any = self.message_handler(inbound)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.metrics.record_handler_failure()
            logger.error(
                f"Message handler failed for message from {mail_from}: {e}",
                exc_info=True,
            )
            return '451 4.3.0 Temporary server error'

        self.metrics.record_accepted(elapsed_ms)
        logger.info(
            f"Accepted message {sanitize_for_logging(message.message_id)} "
            f"from {mail_from} ({len(raw)} bytes, {elapsed_ms:.1f} ms)"
        )
        return '250 OK'


def create_controller(handler: DecodingSMTPHandler, config: SMTPConfig) -> Controller:
    """Build an aiosmtpd controller for the handler.

    Args:
        handler: Decoding handler
        config: Bind address, port, advertised hostname and size limit

    Returns:
        Controller, not yet started
    """
    return Controller(
        handler,
        hostname=config.host,
        port=config.port,
        server_hostname=config.server_hostname or None,
        data_size_limit=config.max_message_size,
    )
