"""
Tests for the message decoder and the FETCH/BODYSTRUCTURE parsing under it.
"""

from datetime import datetime, timezone

import pytest

from mailadmin.errors import DecodeFailure
from mailadmin.imap.bodystructure import extract_attachments, parse_bodystructure
from mailadmin.imap.fetch_response import RawMessage, RawSummary, extract_parenthesized, group_fetch_response
from mailadmin.imap.parser import NO_SUBJECT, UNKNOWN_SENDER, decode_message, decode_summary
from mailadmin.models import AddressedValue, MultipleValue, PlainValue

from fake_imap_client import make_message

HEADERS = (
    b"From: \"Alice Smith\" <alice@example.com>\r\n"
    b"To: bob@example.com, Carol <carol@example.com>\r\n"
    b"Subject: =?utf-8?q?Caf=C3=A9_menu?=\r\n"
    b"Date: Tue, 05 Mar 2024 10:30:00 +0100\r\n"
    b"\r\n"
)


class TestDecodeSummary:
    def test_header_values_are_tagged(self):
        ov = decode_summary(RawSummary(uid=7, flags=frozenset({r"\Seen"}), size=120, header_bytes=HEADERS), "INBOX")

        assert ov.subject == "Café menu"
        assert ov.from_addr == AddressedValue(name="Alice Smith", address="alice@example.com")
        assert isinstance(ov.to, MultipleValue)
        assert ov.to.addresses() == ("bob@example.com", "carol@example.com")
        assert ov.date == datetime(2024, 3, 5, 9, 30, tzinfo=timezone.utc)
        assert ov.seen is True
        assert ov.size == 120

    def test_to_dict_uses_first_address(self):
        ov = decode_summary(RawSummary(uid=7, header_bytes=HEADERS), "INBOX")
        d = ov.to_dict()
        assert d["from"] == "Alice Smith <alice@example.com>"
        assert d["to"] == "bob@example.com"
        assert d["seen"] is False

    def test_missing_headers_get_defaults(self):
        ov = decode_summary(RawSummary(uid=1, header_bytes=b"X-Other: 1\r\n\r\n"), "INBOX")
        assert ov.subject == NO_SUBJECT
        assert ov.from_addr == PlainValue(UNKNOWN_SENDER)
        assert ov.date is None

    def test_internaldate_fallback(self):
        raw = RawSummary(uid=1, header_bytes=b"Subject: x\r\n\r\n", internaldate="05-Mar-2024 10:30:00 +0000")
        ov = decode_summary(raw, "INBOX")
        assert ov.date == datetime(2024, 3, 5, 10, 30, tzinfo=timezone.utc)

    def test_no_header_data_fails(self):
        with pytest.raises(DecodeFailure):
            decode_summary(RawSummary(uid=3), "INBOX")

    def test_attachment_metadata_from_bodystructure(self):
        bs = (
            '(("TEXT" "PLAIN" ("CHARSET" "utf-8") NIL NIL "7BIT" 12 1 NIL NIL NIL)'
            '("APPLICATION" "PDF" ("NAME" "q1.pdf") NIL NIL "BASE64" 4096 NIL '
            '("ATTACHMENT" ("FILENAME" "q1.pdf")) NIL) "MIXED" ("BOUNDARY" "b1") NIL NIL)'
        )
        ov = decode_summary(RawSummary(uid=1, header_bytes=HEADERS, bodystructure=bs), "INBOX")
        assert [a.to_dict() for a in ov.attachments] == [
            {"filename": "q1.pdf", "content_type": "application/pdf", "size": 4096}
        ]


class TestDecodeMessage:
    def test_bodies_and_attachments(self):
        msg = make_message(
            subject="Report",
            text="plain body",
            html="<p>html body</p>",
            message_id="<m1@example.com>",
            attachments=[("data.csv", b"a,b\n1,2\n", "text/csv")],
        )
        detail = decode_message(RawMessage(uid=5, raw=msg.as_bytes()), "INBOX")

        assert detail.text.strip() == "plain body"
        assert detail.html.strip() == "<p>html body</p>"
        assert detail.message_id == "<m1@example.com>"
        assert len(detail.attachments) == 1
        att = detail.attachments[0]
        assert (att.index, att.filename, att.content_type) == (0, "data.csv", "text/csv")
        assert att.data == b"a,b\n1,2\n"
        assert att.size == len(att.data)

    def test_unnamed_attachment_gets_index_name(self):
        msg = make_message()
        msg.add_attachment(b"\x00\x01", maintype="application", subtype="octet-stream")

        detail = decode_message(RawMessage(uid=5, raw=msg.as_bytes()), "INBOX")

        assert detail.attachments[0].filename == "attachment_0"

    def test_to_dict_omits_attachment_bytes(self):
        msg = make_message(attachments=[("a.bin", b"secret-bytes", "application/octet-stream")])
        d = decode_message(RawMessage(uid=5, raw=msg.as_bytes()), "INBOX").to_dict()
        assert "data" not in d["attachments"][0]
        assert d["attachments"][0]["size"] == len(b"secret-bytes")


class TestFetchResponse:
    def test_groups_literals_per_message(self):
        data = [
            (b'1 (UID 10 FLAGS (\\Seen) RFC822.SIZE 300 INTERNALDATE "05-Mar-2024 10:30:00 +0000" BODY[HEADER] {20}', b"Subject: one\r\n\r\n"),
            b")",
            (b"2 (UID 11 FLAGS () RFC822.SIZE 50 BODY[HEADER] {20}", b"Subject: two\r\n\r\n"),
            b")",
        ]
        items = group_fetch_response(data)

        assert [i.uid for i in items] == [10, 11]
        assert items[0].flags == frozenset({"\\Seen"})
        assert items[0].size == 300
        assert items[0].internaldate == "05-Mar-2024 10:30:00 +0000"
        assert items[1].literal("BODY[HEADER]") == b"Subject: two\r\n\r\n"

    def test_filename_literal_inside_bodystructure(self):
        data = [
            (
                b'3 (UID 12 FLAGS () BODYSTRUCTURE (("TEXT" "PLAIN" NIL NIL NIL "7BIT" 10 1 NIL NIL NIL)'
                b'("APPLICATION" "PDF" ("NAME" {16}',
                'résumé "2".pdf'.encode("utf-8"),
            ),
            (
                b') NIL NIL "BASE64" 2048 NIL ("ATTACHMENT" ("FILENAME" "cv.pdf")) NIL) "MIXED") BODY[HEADER] {18}',
                b"Subject: cv\r\n\r\n",
            ),
            b")",
        ]
        [item] = group_fetch_response(data)

        assert item.uid == 12
        assert item.literal("BODY[HEADER]") == b"Subject: cv\r\n\r\n"
        tree = parse_bodystructure(item.bodystructure)
        assert tree[1][2] == ["NAME", 'résumé "2".pdf']
        metas = extract_attachments(tree)
        assert [(m.filename, m.size) for m in metas] == [("cv.pdf", 2048)]

    def test_extract_parenthesized_respects_quotes(self):
        text = 'UID 4 BODYSTRUCTURE ("TEXT" "PLAIN" ("NAME" "a (b).txt") NIL) FLAGS ()'
        assert extract_parenthesized(text, "BODYSTRUCTURE") == '("TEXT" "PLAIN" ("NAME" "a (b).txt") NIL)'
        assert extract_parenthesized(text, "ENVELOPE") is None


class TestBodystructure:
    def test_nil_becomes_none(self):
        assert parse_bodystructure('("TEXT" NIL 5)') == ["TEXT", None, "5"]

    def test_unbalanced_raises(self):
        with pytest.raises(ValueError):
            parse_bodystructure('("TEXT" "PLAIN"')

    def test_inline_text_body_is_not_an_attachment(self):
        tree = parse_bodystructure('("TEXT" "PLAIN" ("CHARSET" "utf-8") NIL NIL "7BIT" 12 1 NIL NIL NIL)')
        assert extract_attachments(tree) == []

    def test_named_image_without_disposition(self):
        tree = parse_bodystructure(
            '(("TEXT" "HTML" NIL NIL NIL "7BIT" 10 1 NIL NIL NIL)'
            '("IMAGE" "PNG" ("NAME" "logo.png") "<logo>" NIL "BASE64" 800 NIL NIL NIL) "RELATED")'
        )
        metas = extract_attachments(tree)
        assert [(m.filename, m.content_type, m.size) for m in metas] == [("logo.png", "image/png", 800)]
