import itertools
import logging

import pytest

from conftest import entry
from topicquota.core.errors import ChunkGroupConsumedError
from topicquota.core.models import ChunkGroup
from topicquota.decoding.chunks import reassemble, split_payload


def _fragments(data: bytes, initiator: str = "0.0.7", size: int = 4, start_seq: int = 1):
    parts = split_payload(data, size)
    return [
        entry(start_seq + i, part, chunk=(initiator, len(parts), i + 1))
        for i, part in enumerate(parts)
    ]


def test_single_entries_pass_through_in_order() -> None:
    entries = [entry(2, "b"), entry(1, "a")]

    result = reassemble(entries)

    assert [p.text for p in result.payloads] == ["a", "b"]
    assert result.stats.single == 2


def test_chunked_group_reassembles_under_any_permutation() -> None:
    data = '{"type":"chat-qa","answer":"hello world"}'.encode()
    frags = _fragments(data, size=10)
    assert len(frags) == 5
    expected_ts = max(f.consensus_timestamp for f in frags)

    for perm in itertools.islice(itertools.permutations(frags), 40):
        result = reassemble(list(perm))
        assert len(result.payloads) == 1
        assert result.payloads[0].text == data.decode()
        assert result.payloads[0].timestamp == expected_ts
        assert result.payloads[0].parts == 5


def test_multibyte_character_split_across_fragments() -> None:
    data = "quota: ✓✓✓ ok".encode("utf-8")
    frags = _fragments(data, size=5)

    result = reassemble(reversed(frags))

    assert result.payloads[0].text == "quota: ✓✓✓ ok"


def test_group_interleaved_with_single_entries() -> None:
    entries = [
        entry(1, "first"),
        entry(2, b"abcd", chunk=("0.0.7", 2, 1)),
        entry(3, "middle"),
        entry(4, b"efgh", chunk=("0.0.7", 2, 2)),
    ]

    result = reassemble(entries)

    texts = [p.text for p in result.payloads]
    assert texts == ["first", "middle", "abcdefgh"]
    assert result.payloads[-1].timestamp == "1700000000.000000004"


def test_incomplete_group_is_dropped_not_raised() -> None:
    frags = _fragments(b"0123456789AB", size=4)
    entries = [entry(10, "solo"), frags[0], frags[2]]

    result = reassemble(entries)

    assert [p.text for p in result.payloads] == ["solo"]
    assert result.stats.groups_incomplete == 1
    assert result.stats.groups_completed == 0


def test_slot_collision_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    a = _fragments(b"AAAABBBB", size=4, start_seq=1)
    b = _fragments(b"CCCCDDDD", size=4, start_seq=3)

    with caplog.at_level(logging.WARNING, logger="topicquota.decoding.chunks"):
        result = reassemble(a + b)

    assert result.stats.slot_collisions == 2
    assert "collision" in caplog.text
    # the later fragments win their slots
    assert [p.text for p in result.payloads] == ["CCCCDDDD"]


def test_out_of_range_chunk_number_is_dropped() -> None:
    bad = entry(1, b"zz", chunk=("0.0.7", 2, 3))

    result = reassemble([bad])

    assert result.payloads == []
    assert result.stats.dropped_fragments == 1


def test_total_of_one_is_a_single_entry() -> None:
    result = reassemble([entry(1, "whole", chunk=("0.0.7", 1, 1))])

    assert [p.text for p in result.payloads] == ["whole"]
    assert result.stats.single == 1


def test_chunk_group_is_assembled_once() -> None:
    group = ChunkGroup.open("0.0.7", 1)
    group.put(entry(1, "x"), 1)
    group.assemble()

    with pytest.raises(ChunkGroupConsumedError):
        group.assemble()


def test_split_payload_sizes() -> None:
    assert split_payload(b"abcdefghij", 4) == [b"abcd", b"efgh", b"ij"]
    assert split_payload(b"", 4) == [b""]
    with pytest.raises(ValueError):
        split_payload(b"abc", 0)


def test_non_positive_total_is_dropped() -> None:
    result = reassemble([entry(1, "bad", chunk=("0.0.7", 0, 1)), entry(2, "ok")])

    assert [p.text for p in result.payloads] == ["ok"]
    assert result.stats.dropped_fragments == 1
    assert result.stats.single == 1
