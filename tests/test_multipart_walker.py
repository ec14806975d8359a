"""
Tests for maildecode/modules/multipart_walker.py

SECURITY STORY: The walker recurses over attacker-controlled structure. These
tests pin down the dispatch order for each part, the framing checks and the
nesting cap that turns a deeply nested MIME bomb into a clean error.
"""

import email
import unittest
from email.policy import compat32

from maildecode.modules.errors import (
    MultipartSyntaxError,
    NestingDepthExceeded,
    UnknownContentType,
    UnknownTransferEncoding,
)
from maildecode.modules.multipart_walker import (
    MultipartWalker,
    WalkResult,
    is_attachment,
    is_embedded_file,
    part_filename,
    trim_trailing_newline,
)


def _parse(raw: bytes):
    return email.message_from_bytes(raw, policy=compat32)


def _multipart(kind: str, boundary: str, *parts: bytes) -> bytes:
    """Assemble a multipart entity (headers + body) from raw part blocks"""
    out = [f'Content-Type: multipart/{kind}; boundary="{boundary}"\r\n\r\n'.encode()]
    for part in parts:
        out.append(f"--{boundary}\r\n".encode())
        out.append(part)
        out.append(b"\r\n")
    out.append(f"--{boundary}--\r\n".encode())
    return b"".join(out)


def _text(body: str, subtype: str = "plain", charset: str = "utf-8") -> bytes:
    return (
        f"Content-Type: text/{subtype}; charset={charset}\r\n\r\n{body}".encode()
    )


PDF_PART = (
    b"Content-Type: application/pdf\r\n"
    b'Content-Disposition: attachment; filename="report.pdf"\r\n'
    b"Content-Transfer-Encoding: base64\r\n"
    b"\r\n"
    b"JVBERi0="
)

IMAGE_PART = (
    b'Content-Type: image/png; name="logo.png"\r\n'
    b"Content-Transfer-Encoding: base64\r\n"
    b"Content-ID: <logo@example.com>\r\n"
    b"\r\n"
    b"iVBORw0K"
)


class TestMixed(unittest.TestCase):

    def setUp(self):
        self.walker = MultipartWalker()

    def test_alternative_and_attachment(self):
        raw = _multipart(
            "mixed", "outer",
            _multipart("alternative", "inner", _text("plain body"), _text("<p>html</p>", "html")),
            PDF_PART,
        )
        result = self.walker.walk_mixed(_parse(raw))

        self.assertEqual(result.text_body, b"plain body")
        self.assertEqual(result.html_body, b"<p>html</p>")
        self.assertEqual(result.text_charset, "utf-8")
        self.assertEqual(len(result.attachments), 1)
        attachment = result.attachments[0]
        self.assertEqual(attachment.filename, "report.pdf")
        self.assertEqual(attachment.content_type, "application/pdf")
        self.assertEqual(attachment.data, b"%PDF-")
        self.assertEqual(result.embedded_files, [])

    def test_nested_group_replaces_bodies(self):
        raw = _multipart(
            "mixed", "outer",
            _text("first"),
            _multipart("alternative", "inner", _text("second")),
        )
        result = self.walker.walk_mixed(_parse(raw))
        self.assertEqual(result.text_body, b"second")

    def test_sibling_text_parts_concatenate(self):
        raw = _multipart("mixed", "b", _text("one"), _text("two"))
        result = self.walker.walk_mixed(_parse(raw))
        self.assertEqual(result.text_body, b"onetwo")

    def test_related_inside_mixed(self):
        raw = _multipart(
            "mixed", "outer",
            _multipart("related", "rel", _text('<img src="cid:logo@example.com">', "html"), IMAGE_PART),
        )
        result = self.walker.walk_mixed(_parse(raw))

        self.assertEqual(result.html_body, b'<img src="cid:logo@example.com">')
        self.assertEqual(len(result.embedded_files), 1)
        embedded = result.embedded_files[0]
        self.assertEqual(embedded.cid, "logo@example.com")
        self.assertEqual(embedded.content_type, 'image/png; name="logo.png"')
        self.assertTrue(embedded.data.startswith(b"\x89PNG"))
        self.assertEqual(result.attachments, [])

    def test_quoted_printable_part_keeps_8bit_bytes(self):
        part = (
            b"Content-Type: text/plain; charset=iso-8859-1\r\n"
            b"Content-Transfer-Encoding: quoted-printable\r\n"
            b"\r\n"
            b"caf\xe9 caf=E9"
        )
        result = self.walker.walk_mixed(_parse(_multipart("mixed", "b", part)))
        self.assertEqual(result.text_body, b"caf\xe9 caf\xe9")
        self.assertEqual(result.text_charset, "iso-8859-1")

    def test_part_without_headers_is_text(self):
        raw = _multipart("mixed", "b", b"\r\ndefault typed")
        result = self.walker.walk_mixed(_parse(raw))
        self.assertEqual(result.text_body, b"default typed")

    def test_unknown_inner_type(self):
        raw = _multipart("mixed", "b", b"Content-Type: application/octet-stream\r\n\r\nxyz")
        with self.assertRaises(UnknownContentType) as ctx:
            self.walker.walk_mixed(_parse(raw))
        self.assertEqual(ctx.exception.context, "mixed")
        self.assertEqual(ctx.exception.content_type, "application/octet-stream")
        self.assertEqual(
            str(ctx.exception),
            "can't process multipart/mixed inner mime type: application/octet-stream",
        )

    def test_unknown_encoding_after_good_sibling(self):
        raw = _multipart(
            "mixed", "b",
            _text("fine"),
            b"Content-Type: text/plain\r\nContent-Transfer-Encoding: quoted-nonsense\r\n\r\nbad",
        )
        with self.assertRaises(UnknownTransferEncoding):
            self.walker.walk_mixed(_parse(raw))


class TestAlternativeAndRelated(unittest.TestCase):

    def setUp(self):
        self.walker = MultipartWalker()

    def test_bodies_kept_apart(self):
        raw = _multipart("alternative", "b", _text("text only"), _text("<b>html only</b>", "html"))
        result = self.walker.walk_alternative(_parse(raw))
        self.assertEqual(result.text_body, b"text only")
        self.assertEqual(result.html_body, b"<b>html only</b>")

    def test_duplicate_bodies_concatenate(self):
        raw = _multipart("alternative", "b", _text("a"), _text("b"))
        result = self.walker.walk_alternative(_parse(raw))
        self.assertEqual(result.text_body, b"ab")

    def test_unknown_type_reports_alternative(self):
        raw = _multipart("alternative", "b", b"Content-Type: application/json\r\n\r\n{}")
        with self.assertRaises(UnknownContentType) as ctx:
            self.walker.walk_alternative(_parse(raw))
        self.assertEqual(ctx.exception.context, "alternative")

    def test_related_extends_embedded_files(self):
        raw = _multipart(
            "related", "r",
            _text("<p>x</p>", "html"),
            IMAGE_PART,
            IMAGE_PART.replace(b"logo@example.com", b"banner@example.com"),
        )
        result = self.walker.walk_related(_parse(raw))
        self.assertEqual([e.cid for e in result.embedded_files], ["logo@example.com", "banner@example.com"])

    def test_walk_dispatches_on_media_type(self):
        raw = _multipart("related", "r", _text("<p>x</p>", "html"))
        self.assertTrue(self.walker.handles("multipart/related"))
        self.assertFalse(self.walker.handles("multipart/signed"))
        result = self.walker.walk(_parse(raw), "multipart/related")
        self.assertEqual(result.html_body, b"<p>x</p>")


class TestFraming(unittest.TestCase):

    def setUp(self):
        self.walker = MultipartWalker()

    def test_missing_boundary_parameter(self):
        raw = b"Content-Type: multipart/mixed\r\n\r\n--x\r\n\r\nbody\r\n--x--\r\n"
        with self.assertRaises(MultipartSyntaxError) as ctx:
            self.walker.walk_mixed(_parse(raw))
        self.assertEqual(ctx.exception.kind, "mixed")

    def test_start_boundary_not_found(self):
        raw = b'Content-Type: multipart/alternative; boundary="x"\r\n\r\nno parts here\r\n'
        with self.assertRaises(MultipartSyntaxError) as ctx:
            self.walker.walk_alternative(_parse(raw))
        self.assertEqual(ctx.exception.kind, "alternative")

    def test_close_boundary_missing(self):
        raw = b'Content-Type: multipart/related; boundary="x"\r\n\r\n--x\r\n\r\ntruncated\r\n'
        with self.assertRaises(MultipartSyntaxError):
            self.walker.walk_related(_parse(raw))


class TestNestingDepth(unittest.TestCase):

    @staticmethod
    def _nested(levels: int) -> bytes:
        raw = _text("deep")
        for level in range(levels):
            raw = _multipart("mixed", f"b{level}", raw)
        return raw

    def test_within_limit(self):
        result = MultipartWalker(max_depth=3).walk_mixed(_parse(self._nested(3)))
        self.assertEqual(result.text_body, b"deep")

    def test_limit_exceeded(self):
        with self.assertRaises(NestingDepthExceeded) as ctx:
            MultipartWalker(max_depth=2).walk_mixed(_parse(self._nested(3)))
        self.assertEqual(ctx.exception.depth, 3)
        self.assertEqual(ctx.exception.limit, 2)


class TestPartClassification(unittest.TestCase):

    def test_filename_only_from_disposition(self):
        part = _parse(IMAGE_PART)
        self.assertEqual(part_filename(part), "")
        self.assertFalse(is_attachment(part))
        self.assertTrue(is_embedded_file(part))

    def test_rfc2231_filename(self):
        part = _parse(
            b"Content-Type: application/pdf\r\n"
            b"Content-Disposition: attachment; filename*=utf-8''r%C3%A9sum%C3%A9.pdf\r\n"
            b"\r\nx"
        )
        self.assertEqual(part_filename(part), "résumé.pdf")

    def test_encoded_word_filename(self):
        raw = _multipart(
            "mixed", "b",
            b"Content-Type: application/pdf\r\n"
            b'Content-Disposition: attachment; filename="=?utf-8?b?w6l0w6kucGRm?="\r\n'
            b"\r\ndata",
        )
        result = MultipartWalker().walk_mixed(_parse(raw))
        self.assertEqual(result.attachments[0].filename, "été.pdf")
        self.assertEqual(result.attachments[0].data, b"data")


class TestHelpers(unittest.TestCase):

    def test_trim_exactly_one_line_ending(self):
        self.assertEqual(trim_trailing_newline(b"hello\r\n"), b"hello")
        self.assertEqual(trim_trailing_newline(b"hello\n\n"), b"hello\n")
        self.assertEqual(trim_trailing_newline(b"hello"), b"hello")

    def test_merge_extends_lists(self):
        outer = WalkResult()
        outer.add_text(b"a", "utf-8")
        nested = WalkResult()
        nested.add_text(b"b", "iso-8859-1")
        outer.merge(nested)
        self.assertEqual(outer.text_body, b"ab")
        self.assertEqual(outer.text_charset, "utf-8")

        outer.merge(nested, replace_bodies=True)
        self.assertEqual(outer.text_body, b"b")
        self.assertEqual(outer.text_charset, "iso-8859-1")


if __name__ == "__main__":
    unittest.main()
