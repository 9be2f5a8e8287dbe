"""
Per-channel message serialization: processing gate, FIFO buffer, combiner
and the stale-flag reaper.
"""

from chatrelay.queue.channel_queue import Admission, ChannelMessageQueue
from chatrelay.queue.combiner import MESSAGE_DELIMITER, combine_messages

__all__ = [
    "Admission",
    "ChannelMessageQueue",
    "MESSAGE_DELIMITER",
    "combine_messages",
]
