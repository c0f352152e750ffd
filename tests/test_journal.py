import logging

import pytest

from topicquota.core.models import WorkflowCheckpoint
from topicquota.storage.journal import WorkflowJournal


def _cp(account: str, step: str, updated_at: float) -> WorkflowCheckpoint:
    return WorkflowCheckpoint(
        account_id=account,
        step=step,
        topic_id="0.0.1001",
        token_id=None,
        serial_number=None,
        owner_account_id=None,
        transfer_status=None,
        error=None,
        updated_at=updated_at,
    )


@pytest.mark.asyncio
async def test_journal_appends_and_loads_last_per_account(tmp_path) -> None:
    path = tmp_path / "state" / "journal.jsonl"
    journal = WorkflowJournal(str(path))

    await journal.append(_cp("0.0.1", "init", 1.0))
    await journal.append(_cp("0.0.2", "topic_created", 2.0))
    await journal.append(_cp("0.0.1", "token_minted", 3.0))

    last = await journal.load_last("0.0.1")
    assert last is not None and last.step == "token_minted"
    assert (await journal.load_last("0.0.3")) is None
    assert len(path.read_text().splitlines()) == 3


def test_checkpoint_json_line_roundtrip() -> None:
    cp = _cp("0.0.1", "complete", 4.5)

    assert WorkflowCheckpoint.from_json_line(cp.to_json_line()) == cp


@pytest.mark.asyncio
async def test_torn_last_line_is_skipped(tmp_path, caplog) -> None:
    path = tmp_path / "journal.jsonl"
    journal = WorkflowJournal(str(path))
    await journal.append(_cp("0.0.9001", "token_minted", 1.0))
    with open(path, "a") as f:
        f.write('{"account_id":"0.0.9001","step":"tok')

    with caplog.at_level(logging.WARNING, logger="topicquota.storage.journal"):
        last = await journal.load_last("0.0.9001")

    assert last is not None and last.step == "token_minted"
    assert "unreadable journal line 2" in caplog.text


def test_checkpoint_without_message_timestamp_still_loads() -> None:
    line = (
        '{"account_id":"0.0.1","step":"init","topic_id":null,"token_id":null,"serial_number":null,'
        '"owner_account_id":null,"transfer_status":null,"error":null,"updated_at":1.0}'
    )

    cp = WorkflowCheckpoint.from_json_line(line)

    assert cp.message_timestamp is None
