#!/usr/bin/env python3
"""
maildecode command line
Decode .eml files or run an SMTP listener that decodes every message
"""

import argparse
import json
import logging
import signal
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from maildecode.modules.errors import DecodeError
from maildecode.modules.message_data import Address, Message
from maildecode.modules.message_decoder import MessageDecoder
from maildecode.modules.smtp_handler import (
    DecodingSMTPHandler,
    InboundMessage,
    create_controller,
)
from maildecode.utils.config import Config
from maildecode.utils.sanitization import sanitize_for_logging
from maildecode.utils.structured_logging import setup_logging


logger = logging.getLogger("maildecode")


def _addresses(addresses: List[Address]) -> List[str]:
    return [str(address) for address in addresses]


def message_summary(message: Message) -> Dict[str, Any]:
    """JSON-friendly view of a decoded message"""
    return {
        "message_id": message.message_id,
        "subject": message.subject,
        "from": _addresses(message.from_),
        "sender": str(message.sender) if message.sender else None,
        "to": _addresses(message.to),
        "cc": _addresses(message.cc),
        "reply_to": _addresses(message.reply_to),
        "date": message.date.isoformat() if message.date else None,
        "in_reply_to": message.in_reply_to,
        "references": message.references,
        "content_type": message.content_type,
        "original_charset": message.original_charset,
        "text_body": message.text_body,
        "html_body": message.html_body,
        "content_size": len(message.content) if message.content is not None else None,
        "attachments": [
            {"filename": a.filename, "content_type": a.content_type, "size": len(a.data)}
            for a in message.attachments
        ],
        "embedded_files": [
            {"cid": e.cid, "content_type": e.content_type, "size": len(e.data)}
            for e in message.embedded_files
        ],
    }


def _print_text_summary(path: str, message: Message) -> None:
    print(f"== {path}")
    print(f"Subject:     {message.subject}")
    print(f"From:        {', '.join(_addresses(message.from_))}")
    print(f"To:          {', '.join(_addresses(message.to))}")
    if message.date:
        print(f"Date:        {message.date.isoformat()}")
    print(f"Message-ID:  {message.message_id}")
    if message.original_charset:
        print(f"Charset:     {message.original_charset}")
    print(f"Text body:   {len(message.text_body)} chars")
    print(f"HTML body:   {len(message.html_body)} chars")
    for attachment in message.attachments:
        print(f"Attachment:  {attachment.filename} ({attachment.content_type}, {len(attachment.data)} bytes)")
    for embedded in message.embedded_files:
        print(f"Embedded:    cid:{embedded.cid} ({embedded.content_type}, {len(embedded.data)} bytes)")
    print()


def decode_files(paths: List[str], config: Config, as_json: bool) -> int:
    """
    Decode each file and print a summary

    Returns:
        Process exit code: 0 if every file decoded, 1 otherwise
    """
    decoder = MessageDecoder(config.decoder)
    failures = 0
    results = []

    for path in paths:
        try:
            raw = Path(path).read_bytes()
        except OSError as e:
            logger.error(f"Cannot read {path}: {e}")
            failures += 1
            continue

        try:
            message = decoder.decode(raw)
        except DecodeError as e:
            logger.error(f"Cannot decode {path}: {type(e).__name__}: {sanitize_for_logging(str(e))}")
            failures += 1
            continue

        if as_json:
            results.append({"file": path, **message_summary(message)})
        else:
            _print_text_summary(path, message)

    if as_json:
        print(json.dumps(results, indent=2, ensure_ascii=False))

    return 1 if failures else 0


def log_message(inbound: InboundMessage) -> None:
    """Default message handler for `serve`: log what arrived"""
    message = inbound.message
    logger.info(
        f"Message {sanitize_for_logging(message.message_id)} for "
        f"{sanitize_for_logging(', '.join(inbound.rcpt_tos))}: "
        f"subject={sanitize_for_logging(message.subject)!r}, "
        f"{len(message.attachments)} attachments, "
        f"{len(message.embedded_files)} embedded files"
    )


def serve(config: Config) -> int:
    """Run the SMTP listener until interrupted"""
    handler = DecodingSMTPHandler(log_message, decoder=MessageDecoder(config.decoder))
    controller = create_controller(handler, config.smtp)

    controller.start()
    logger.info(f"SMTP server listening on {config.smtp.host}:{config.smtp.port}")
    try:
        while True:
            time.sleep(3600)
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    finally:
        controller.stop()
        logger.info(f"SMTP server stopped; metrics: {handler.metrics.get_summary()}")
    return 0


def signal_handler(signum, frame):
    """Turn SIGTERM into the same shutdown path as Ctrl+C"""
    raise KeyboardInterrupt


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="maildecode",
        description="Decode RFC 5322 / MIME messages",
    )
    parser.add_argument("--env-file", default=".env", help="Environment file (default: .env)")
    subcommands = parser.add_subparsers(dest="command", required=True)

    decode_cmd = subcommands.add_parser("decode", help="Decode .eml files")
    decode_cmd.add_argument("files", nargs="+", help="Raw message files")
    decode_cmd.add_argument("--json", action="store_true", help="Print JSON instead of text")

    subcommands.add_parser("serve", help="Run an SMTP listener that decodes incoming mail")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    config = Config.from_env(args.env_file)
    try:
        config.validate()
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(config.system)

    if args.command == "decode":
        return decode_files(args.files, config, args.json)

    signal.signal(signal.SIGTERM, signal_handler)
    return serve(config)


if __name__ == "__main__":
    sys.exit(main())
