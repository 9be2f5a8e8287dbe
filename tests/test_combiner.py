"""
Tests for the message combiner.
"""

from chatrelay.queue.combiner import MESSAGE_DELIMITER, combine_messages


def test_no_queued_messages_returns_primary_unchanged():
    assert combine_messages("hello", []) == "hello"


def test_combines_in_order_with_delimiter():
    combined = combine_messages("A", ["B", "C"])

    assert combined == "A\n\n---\n\nB\n\n---\n\nC"
    assert combined.split(MESSAGE_DELIMITER) == ["A", "B", "C"]


def test_preserves_multiline_messages():
    combined = combine_messages("line 1\nline 2", ["next"])

    assert combined == f"line 1\nline 2{MESSAGE_DELIMITER}next"
