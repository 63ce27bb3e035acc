from mailadmin.compose import OutgoingAttachment, OutgoingEmail, build_message, build_reply, reply_subject
from mailadmin.models import AddressedValue, EmailMessage


class TestBuildMessage:
    def test_headers_and_alternatives(self):
        msg = build_message(
            "me@example.com",
            OutgoingEmail(to="you@example.com", cc="cc@example.com", subject="Status", text="line 1\nline 2"),
        )

        assert msg["From"] == "me@example.com"
        assert msg["Cc"] == "cc@example.com"
        assert msg["Message-ID"].endswith("@example.com>")
        assert msg["Date"]
        assert msg.get_body(preferencelist=("plain",)).get_content().strip() == "line 1\nline 2"
        assert "line 1<br>line 2" in msg.get_body(preferencelist=("html",)).get_content()

    def test_text_is_escaped_in_html(self):
        msg = build_message("me@example.com", OutgoingEmail(to="x@example.com", text="<b>hi</b>"))
        assert "&lt;b&gt;hi&lt;/b&gt;" in msg.get_body(preferencelist=("html",)).get_content()

    def test_empty_subject(self):
        msg = build_message("me@example.com", OutgoingEmail(to="x@example.com"))
        assert msg["Subject"] == "(No subject)"

    def test_signature_image_is_related_part(self):
        msg = build_message(
            "me@example.com",
            OutgoingEmail(to="x@example.com", html="<p>Hi</p>"),
            signature_html='<img src="cid:signature" />',
            signature_image=b"\x89PNG fake",
        )

        images = [p for p in msg.walk() if p.get_content_type() == "image/png"]
        assert len(images) == 1
        assert images[0]["Content-ID"] == "<signature>"
        assert images[0].get_payload(decode=True) == b"\x89PNG fake"
        assert "cid:signature" in msg.get_body(preferencelist=("html",)).get_content()

    def test_attachments(self):
        msg = build_message(
            "me@example.com",
            OutgoingEmail(
                to="x@example.com",
                text="see attached",
                attachments=[OutgoingAttachment("notes.txt", b"hello", "text/plain")],
            ),
        )

        parts = list(msg.iter_attachments())
        assert [p.get_filename() for p in parts] == ["notes.txt"]
        assert parts[0].get_payload(decode=True) == b"hello"


class TestReply:
    def _original(self, **kwargs):
        base = dict(
            uid=3,
            mailbox="INBOX",
            subject="Lunch?",
            from_addr=AddressedValue(name="Dana", address="dana@example.com"),
            message_id="<a@example.com>",
        )
        base.update(kwargs)
        return EmailMessage(**base)

    def test_reply_fields(self):
        data = build_reply(self._original(), "Sure\nat noon")

        assert data.to == "dana@example.com"
        assert data.subject == "Re: Lunch?"
        assert data.in_reply_to == "<a@example.com>"
        assert data.references == "<a@example.com>"
        assert data.html == "<p>Sure<br>at noon</p>"

    def test_reply_extends_reference_chain(self):
        data = build_reply(self._original(references="<root@example.com>"), "ok")
        assert data.references == "<root@example.com> <a@example.com>"

    def test_subject_prefix_not_doubled(self):
        assert reply_subject("Re: Lunch?") == "Re: Lunch?"
        assert reply_subject("RE: Lunch?") == "RE: Lunch?"
        assert reply_subject("Lunch?") == "Re: Lunch?"
