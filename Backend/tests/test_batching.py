"""
test_batching.py
~~~~~~~~~~~~~~~~
Chunk partitioning invariants (hypothesis) and batch-reply parsing.
"""
from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from agentdesk.services.classification.batching import (
    ITEM_OVERHEAD_TOKENS,
    MAX_ITEMS_PER_CHUNK,
    MAX_TOKENS_PER_CHUNK,
    MIN_ITEMS_PER_CHUNK,
    PROMPT_OVERHEAD_TOKENS,
    PendingItem,
    estimate_tokens,
    parse_batch_response,
    partition_into_chunks,
)
from agentdesk.services.classification.errors import BatchParseError


# ─── Strategies ──────────────────────────────────────────────────────────────

notes = st.lists(
    st.lists(st.sampled_from(["refund", "bug", "call", "me", "back", "price"]), min_size=1, max_size=400)
    .map(" ".join),
    min_size=0,
    max_size=80,
)


def _items(texts):
    return [PendingItem(i, t) for i, t in enumerate(texts)]


class TestPartitionProperties:

    @given(notes)
    @settings(max_examples=150, deadline=None)
    def test_order_and_coverage_preserved(self, texts):
        chunks = partition_into_chunks(_items(texts))
        flattened = [item.index for chunk in chunks for item in chunk]
        assert flattened == list(range(len(texts)))
        assert all(chunks)

    @given(notes)
    @settings(max_examples=150, deadline=None)
    def test_limits_respected_once_minimum_reached(self, texts):
        for chunk in partition_into_chunks(_items(texts)):
            assert len(chunk) <= max(MAX_ITEMS_PER_CHUNK, MIN_ITEMS_PER_CHUNK)
            tokens = sum(estimate_tokens(i.text) + ITEM_OVERHEAD_TOKENS for i in chunk)
            # Only chunks still filling up to the minimum may run over budget
            if tokens + PROMPT_OVERHEAD_TOKENS > MAX_TOKENS_PER_CHUNK:
                assert len(chunk) <= MIN_ITEMS_PER_CHUNK

    @given(notes)
    @settings(max_examples=150, deadline=None)
    def test_only_last_chunk_may_be_small(self, texts):
        chunks = partition_into_chunks(_items(texts))
        for chunk in chunks[:-1]:
            assert len(chunk) >= MIN_ITEMS_PER_CHUNK


class TestPartitionExamples:

    def test_twenty_short_notes(self):
        chunks = partition_into_chunks(_items(["call me back"] * 20))
        assert [len(c) for c in chunks] == [15, 5]

    def test_empty(self):
        assert partition_into_chunks([]) == []

    def test_long_notes_split_on_tokens(self):
        long_note = " ".join(["word"] * 300)   # 400 tokens each
        chunks = partition_into_chunks(_items([long_note] * 12))
        assert [len(c) for c in chunks] == [5, 5, 2]

    def test_token_estimate(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("one two three") == 4


class TestParseBatchResponse:

    def test_plain_array(self):
        reply = '[{"item": 1, "category": "Billing"}, {"item": 2, "category": "Sales"}]'
        assert parse_batch_response(reply, 2) == {1: "Billing", 2: "Sales"}

    def test_code_fence_and_chatter(self):
        reply = 'Sure!\n```json\n[{"item": 1, "category": "technical"}]\n```\nDone.'
        assert parse_batch_response(reply, 1) == {1: "Technical"}

    def test_alternative_ordinal_keys(self):
        reply = '[{"taskNumber": 1, "category": "Urgent"}, {"index": 2.0, "category": "Support"}]'
        assert parse_batch_response(reply, 2) == {1: "Urgent", 2: "Support"}

    def test_out_of_range_and_duplicates_ignored(self):
        reply = (
            '[{"item": 0, "category": "Sales"}, {"item": 1, "category": "Billing"},'
            ' {"item": 1, "category": "Sales"}, {"item": 9, "category": "Sales"}]'
        )
        assert parse_batch_response(reply, 2) == {1: "Billing"}

    def test_unknown_label_becomes_general(self):
        assert parse_batch_response('[{"item": 1, "category": "Marketing"}]', 1) == {1: "General"}

    def test_bool_is_not_an_ordinal(self):
        with pytest.raises(BatchParseError):
            parse_batch_response('[{"item": true, "category": "Sales"}]', 1)

    @pytest.mark.parametrize("reply", ["", "no json here", "[not json]", '{"item": 1}', "[]"])
    def test_unusable_replies(self, reply):
        with pytest.raises(BatchParseError):
            parse_batch_response(reply, 3)

    def test_partial_reply_is_kept(self):
        reply = '[{"item": 2, "category": "Sales"}]'
        assert parse_batch_response(reply, 5) == {2: "Sales"}
