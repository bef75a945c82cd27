"""Bounded chat log fed by server chat broadcasts."""

import logging
from dataclasses import dataclass, field
from typing import List

from .constants import MAX_CHAT_MESSAGES

logger = logging.getLogger(__name__)


def format_chat_entry(sender: str, text: str) -> str:
    """Display form of a chat line: ``"Alice: hi"``, or the bare text without sender."""
    if not sender:
        return text
    return f"{sender}: {text}"


@dataclass
class ChatLog:
    """Ordered display-ready chat lines, oldest evicted past ``max_messages``."""

    max_messages: int = MAX_CHAT_MESSAGES
    messages: List[str] = field(default_factory=list)

    def add(self, entry: str) -> str:
        """Append a display-ready line."""
        self.messages.append(entry)

        # Remove old messages if over limit
        while len(self.messages) > self.max_messages:
            self.messages.pop(0)
        return entry

    def add_message(self, sender: str, text: str) -> str:
        """Append a chat line from sender. Returns the stored entry."""
        entry = format_chat_entry(sender, text)
        logger.debug(f"Chat: {entry}")
        return self.add(entry)

    def clear(self):
        self.messages.clear()

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self):
        return iter(self.messages)
