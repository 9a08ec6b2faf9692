"""Tests for message chunker."""

import random

from chat_memory.chunker import (
    MAX_MESSAGES_PER_CHUNK,
    TWO_HOURS_SEC,
    MessageChunker,
    build_chunk,
    chunk_messages,
)
from conftest import make_conversation, make_message


class TestMessageChunker:
    """Test MessageChunker class."""

    def setup_method(self):
        """Set up test fixtures."""
        self.chunker = MessageChunker()

    def test_empty_input(self):
        assert self.chunker.chunk([], "100", "Alice") == []

    def test_only_blank_messages(self):
        messages = [make_message(id=1, text=""), make_message(id=2, text="   \n")]
        assert self.chunker.chunk(messages, "100", "Alice") == []

    def test_single_message(self):
        """A single message yields one chunk describing it."""
        chunks = self.chunker.chunk([make_message(id=7, text="Hi there")], "100", "Alice")

        assert len(chunks) == 1
        chunk = chunks[0]
        assert chunk.text == "Alice: Hi there"
        assert chunk.message_ids == [7]
        assert chunk.message_count == 1
        assert chunk.start_date == chunk.end_date == 1_000_000
        assert chunk.chat_id == "100"
        assert chunk.chat_title == "Alice"

    def test_short_conversation_single_chunk(self):
        messages = make_conversation(5, gap_sec=60)
        chunks = self.chunker.chunk(messages, "100", "Client")

        assert len(chunks) == 1
        assert chunks[0].message_count == 5
        assert chunks[0].start_date == messages[0].date
        assert chunks[0].end_date == messages[-1].date

    def test_gap_exactly_threshold_stays_together(self):
        messages = [
            make_message(id=1, date=0),
            make_message(id=2, date=TWO_HOURS_SEC),
        ]
        chunks = self.chunker.chunk(messages, "100", "Alice")
        assert len(chunks) == 1
        assert chunks[0].message_ids == [1, 2]

    def test_gap_over_threshold_splits(self):
        messages = [
            make_message(id=1, date=0),
            make_message(id=2, date=TWO_HOURS_SEC + 1),
        ]
        chunks = self.chunker.chunk(messages, "100", "Alice")
        assert [c.message_ids for c in chunks] == [[1], [2]]

    def test_splits_by_message_count(self):
        """25 messages a minute apart become chunks of 20 and 5."""
        chunks = self.chunker.chunk(make_conversation(25, gap_sec=60), "100", "Client")
        assert [c.message_count for c in chunks] == [20, 5]

    def test_splits_by_character_budget(self):
        messages = [
            make_message(id=i + 1, date=1_000_000 + i, text="x" * 100, sender_name="Bob")
            for i in range(25)
        ]
        chunks = self.chunker.chunk(messages, "100", "Bob")

        assert len(chunks) > 1
        for chunk in chunks:
            assert chunk.message_count <= MAX_MESSAGES_PER_CHUNK
            assert len(chunk.text) <= 2000

    def test_oversized_message_still_gets_chunk(self):
        messages = [
            make_message(id=1, date=0, text="short"),
            make_message(id=2, date=10, text="y" * 5000),
            make_message(id=3, date=20, text="short again"),
        ]
        chunks = self.chunker.chunk(messages, "100", "Alice")

        assert [c.message_ids for c in chunks] == [[1], [2], [3]]

    def test_custom_limits(self):
        chunker = MessageChunker(max_messages=3, max_chars=10_000)
        chunks = chunker.chunk(make_conversation(7), "100", "Client")
        assert [c.message_count for c in chunks] == [3, 3, 1]

    def test_unsorted_input_is_ordered_by_date(self):
        messages = make_conversation(6, gap_sec=30)
        shuffled = list(messages)
        random.Random(42).shuffle(shuffled)

        chunks = self.chunker.chunk(shuffled, "100", "Client")

        assert len(chunks) == 1
        assert chunks[0].message_ids == [m.id for m in messages]

    def test_blank_messages_are_skipped(self):
        messages = [
            make_message(id=1, date=0, text="first"),
            make_message(id=2, date=10, text="  "),
            make_message(id=3, date=20, text="third"),
        ]
        chunks = self.chunker.chunk(messages, "100", "Alice")

        assert chunks[0].message_ids == [1, 3]
        assert "\n\n" not in chunks[0].text

    def test_text_format_one_line_per_message(self):
        messages = [
            make_message(id=1, date=0, text="Hello", sender_name="Operator", outgoing=True),
            make_message(id=2, date=5, text="Hi!", sender_name="Client"),
        ]
        chunk = self.chunker.chunk(messages, "100", "Client")[0]
        assert chunk.text == "Operator: Hello\nClient: Hi!"

    def test_outgoing_only_flag(self):
        all_out = [make_message(id=i, date=i, outgoing=True) for i in range(1, 4)]
        mixed = all_out + [make_message(id=4, date=4, outgoing=False)]

        assert self.chunker.chunk(all_out, "100", "A")[0].is_outgoing_only is True
        assert self.chunker.chunk(mixed, "100", "A")[0].is_outgoing_only is False

    def test_sender_names_unique_in_order(self):
        chunk = self.chunker.chunk(make_conversation(6), "100", "Client")[0]
        assert chunk.sender_names == ["Operator", "Client"]


class TestChunkingProperties:
    """Invariants that hold for any input."""

    def _messages(self):
        rng = random.Random(7)
        messages = []
        date = 1_000_000
        for i in range(120):
            date += rng.choice([5, 60, 600, TWO_HOURS_SEC, TWO_HOURS_SEC + 60])
            messages.append(
                make_message(
                    id=i + 1,
                    date=date,
                    text="w" * rng.randint(0, 300),
                    sender_name=rng.choice(["Operator", "Client"]),
                )
            )
        return messages

    def test_deterministic(self):
        messages = self._messages()
        first = chunk_messages(messages, "100", "Chat")
        second = chunk_messages(list(reversed(messages)), "100", "Chat")
        assert [c.model_dump() for c in first] == [c.model_dump() for c in second]

    def test_every_non_empty_message_in_exactly_one_chunk(self):
        messages = self._messages()
        chunks = chunk_messages(messages, "100", "Chat")

        covered = [mid for c in chunks for mid in c.message_ids]
        expected = [m.id for m in messages if m.text.strip()]
        assert sorted(covered) == sorted(expected)
        assert len(covered) == len(set(covered))

    def test_chunks_are_chronological_and_bounded(self):
        chunks = chunk_messages(self._messages(), "100", "Chat")

        for chunk in chunks:
            assert chunk.start_date <= chunk.end_date
            assert 1 <= chunk.message_count <= MAX_MESSAGES_PER_CHUNK
            assert chunk.message_count == len(chunk.message_ids)
        for earlier, later in zip(chunks, chunks[1:]):
            assert earlier.end_date <= later.start_date


def test_build_chunk_dates():
    messages = make_conversation(3, gap_sec=100)
    chunk = build_chunk(messages, "100", "Client")

    assert chunk.start_date == 1_000_000
    assert chunk.end_date == 1_000_200
    assert chunk.payload()["message_ids"] == [1, 2, 3]


def test_chunk_messages_custom_gap():
    messages = [make_message(id=1, date=0), make_message(id=2, date=120)]

    assert len(chunk_messages(messages, "100", "A", gap_threshold_seconds=60)) == 2
    assert len(chunk_messages(messages, "100", "A", gap_threshold_seconds=120)) == 1
