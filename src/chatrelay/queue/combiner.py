"""
Combine a primary message with messages buffered while a channel was busy.
"""

import logging
from typing import Sequence

logger = logging.getLogger(__name__)

MESSAGE_DELIMITER = "\n\n---\n\n"


def combine_messages(primary: str, queued: Sequence[str]) -> str:
    """
    Merge a primary message with queued follow-ups into one prompt.

    Args:
        primary: The message that was admitted for processing
        queued: Messages drained from the channel queue, oldest first

    Returns:
        The primary message unchanged when nothing was queued, otherwise all
        messages joined with MESSAGE_DELIMITER in order
    """
    if not queued:
        return primary

    logger.debug(f"Combining primary message with {len(queued)} queued messages")
    return MESSAGE_DELIMITER.join([primary, *queued])
