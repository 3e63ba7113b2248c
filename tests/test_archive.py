import pytest

from imap_webmail.emails.archive import NO_WRITABLE_FOLDER, append_to_folder
from imap_webmail.errors import AppendError

from tests.helpers import FakeSession, make_raw


@pytest.mark.asyncio
async def test_reports_the_folder_actually_used():
    session = FakeSession({"INBOX": [], "Sent Items": []})
    raw = make_raw(subject="Sent copy")

    result = await append_to_folder(session, raw, ["Sent", "Sent Items"], flags="(\\Seen)")

    assert result.archived is True
    assert result.target == "Sent Items"
    assert session.raw("Sent Items", 1) == raw
    assert session.flags("Sent Items", 1) == ["\\Seen"]
    assert "Sent" not in session.boxes


@pytest.mark.asyncio
async def test_creates_folder_when_missing():
    session = FakeSession({"INBOX": []})

    result = await append_to_folder(session, make_raw(), ["Drafts", "Draft"], flags="(\\Draft \\Seen)")

    assert result.target == "Drafts"
    assert session.flags("Drafts", 1) == ["\\Draft", "\\Seen"]


@pytest.mark.asyncio
async def test_skips_when_no_folder_is_writable():
    session = FakeSession({"INBOX": []}, can_create=False)

    result = await append_to_folder(session, make_raw(), ["Sent", "Sent Items"])

    assert result.archived is False
    assert result.skipped == NO_WRITABLE_FOLDER
    assert not any(call[0] == "append" for call in session.calls)


@pytest.mark.asyncio
async def test_append_failure_propagates():
    session = FakeSession({"INBOX": [], "Sent": []}, fail_append={"Sent"})

    with pytest.raises(AppendError):
        await append_to_folder(session, make_raw(), ["Sent"])
