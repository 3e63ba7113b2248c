"""Tests for mailbox listing, flags and search."""

import pytest

from imap_webmail.emails.listing import (
    has_flag,
    is_seen,
    is_selectable,
    list_all,
    list_mailbox,
    search_by_header,
    search_messages,
    summarize,
)
from imap_webmail.emails.models import Folder
from imap_webmail.errors import MailboxNotFoundError

from tests.helpers import FakeSession, make_raw


class TestFlags:
    @pytest.mark.parametrize("flag", ["\\Seen", "\\SEEN", "\\seen", "Seen"])
    def test_seen_variants(self, flag):
        assert is_seen([flag]) is True

    def test_unseen(self):
        assert is_seen([]) is False
        assert is_seen(["\\Flagged", "\\Answered"]) is False

    def test_has_flag(self):
        assert has_flag(["\\DRAFT"], "\\Draft") is True
        assert has_flag(["\\Drafts"], "\\Draft") is False

    def test_selectable(self):
        assert is_selectable(Folder(name="INBOX", flags=["\\HasChildren"])) is True
        assert is_selectable(Folder(name="[Gmail]", flags=["\\Noselect"])) is False
        assert is_selectable(Folder(name="Gone", flags=["\\NonExistent"])) is False


def test_summarize_reads_headers_and_moved_at():
    headers = b"X-MOVED-AT: 2024-05-01T10:00:00.000Z\r\nFrom: a@example.com\r\nSubject: Hi\r\n\r\n"

    summary = summarize(3, ["\\SEEN"], headers, "Trash")

    assert summary.sender == "a@example.com"
    assert summary.subject == "Hi"
    assert summary.seen is True
    assert summary.moved_at == "2024-05-01T10:00:00.000Z"
    assert str(summary.ref) == "Trash::3"


def test_summarize_without_moved_at():
    summary = summarize(1, [], b"Subject: plain\r\n\r\n", "INBOX")

    assert summary.moved_at is None
    assert summary.seen is False


class TestListMailbox:
    @pytest.mark.asyncio
    async def test_lists_every_message(self):
        session = FakeSession({"INBOX": [make_raw(subject="one"), make_raw(subject="two")]})
        session.flags("INBOX", 2).append("\\Seen")

        messages = await list_mailbox(session, "INBOX")

        assert [(m.uid, m.subject, m.seen) for m in messages] == [(1, "one", False), (2, "two", True)]
        assert all(m.mailbox == "INBOX" for m in messages)

    @pytest.mark.asyncio
    async def test_case_insensitive_fallback(self):
        session = FakeSession({"INBOX": [], "INBOX.Sent": [make_raw(subject="sent one")]})

        messages = await list_mailbox(session, "sent")

        assert [m.mailbox for m in messages] == ["INBOX.Sent"]

    @pytest.mark.asyncio
    async def test_unknown_mailbox_raises(self):
        session = FakeSession({"INBOX": []})

        with pytest.raises(MailboxNotFoundError):
            await list_mailbox(session, "Nowhere")


@pytest.mark.asyncio
async def test_list_all_skips_broken_mailbox():
    session = FakeSession(
        {"INBOX": [make_raw(subject="a")], "Broken": [make_raw()], "Archive": [make_raw(subject="b")]},
        unopenable={"Broken"},
    )

    messages = await list_all(session)

    assert sorted((m.mailbox, m.subject) for m in messages) == [("Archive", "b"), ("INBOX", "a")]


class TestSearchByHeader:
    @pytest.mark.asyncio
    async def test_matches_sender(self):
        session = FakeSession(
            {"INBOX": [make_raw(sender="carol@example.com"), make_raw(sender="dave@example.com")]}
        )

        messages = await search_by_header(session, "INBOX", "from", "carol")

        assert [m.uid for m in messages] == [1]

    @pytest.mark.asyncio
    async def test_failure_yields_empty_list(self):
        session = FakeSession({"INBOX": [make_raw()]})

        assert await search_by_header(session, "Nowhere", "from", "carol") == []


class TestSearchMessages:
    @pytest.mark.asyncio
    async def test_header_and_body_hits_across_mailboxes(self):
        session = FakeSession(
            {
                "INBOX": [
                    make_raw(subject="Budget 2024"),
                    make_raw(subject="Lunch", text="the budget is approved"),
                    make_raw(subject="Unrelated"),
                ],
                "Archive": [make_raw(subject="old budget")],
            }
        )

        messages = await search_messages(session, "budget")

        assert sorted((m.mailbox, m.uid) for m in messages) == [("Archive", 1), ("INBOX", 1), ("INBOX", 2)]

    @pytest.mark.asyncio
    async def test_no_duplicates_when_header_and_body_match(self):
        session = FakeSession({"INBOX": [make_raw(subject="invoice", text="invoice attached")]})

        messages = await search_messages(session, "invoice", mailboxes=["INBOX", "inbox"])

        assert len(messages) == 1

    @pytest.mark.asyncio
    async def test_body_scan_respects_limit(self):
        session = FakeSession({"INBOX": [make_raw(subject=f"m{i}", text="needle" if i == 0 else "hay") for i in range(5)]})

        messages = await search_messages(session, "needle", body_limit=2)

        assert messages == []

    @pytest.mark.asyncio
    async def test_failing_mailbox_is_skipped(self):
        session = FakeSession({"INBOX": [make_raw(subject="match")]})

        messages = await search_messages(session, "match", mailboxes=["Missing", "INBOX"])

        assert [m.uid for m in messages] == [1]
