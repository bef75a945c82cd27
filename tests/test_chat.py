"""Tests for the chat log."""
from guildsync.chat import ChatLog, format_chat_entry


def test_entry_format():
    assert format_chat_entry("Alice", "hi") == "Alice: hi"
    assert format_chat_entry("", "Server restarting") == "Server restarting"


def test_log_keeps_order():
    log = ChatLog()
    log.add_message("Alice", "hi")
    log.add_message("Bob", "hello")
    assert list(log) == ["Alice: hi", "Bob: hello"]


def test_oldest_evicted_past_limit():
    log = ChatLog(max_messages=3)
    for i in range(5):
        log.add_message("A", str(i))
    assert len(log) == 3
    assert log.messages == ["A: 2", "A: 3", "A: 4"]


def test_clear():
    log = ChatLog()
    log.add("system line")
    log.clear()
    assert len(log) == 0
