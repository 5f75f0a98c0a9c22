"""
Counts messages per chat and logs a digest every morning at 08:00.

Counts live in memory and are lost on reload.
"""

import logging
from collections import Counter

logger = logging.getLogger("plugins.daily_digest")

_counts = Counter()


def handle(event, transport, config):
    if isinstance(event, dict) and event.get("chat"):
        _counts[event["chat"]] += 1


def send_digest():
    if not _counts:
        logger.info("Daily digest: no messages")
        return
    busiest = ", ".join(f"{chat}={n}" for chat, n in _counts.most_common(5))
    logger.info(f"Daily digest: {sum(_counts.values())} messages ({busiest})")
    _counts.clear()


def setup(context):
    context.logger.info("daily_digest_ready", plugin=context.name)


def teardown():
    _counts.clear()


info = {
    "name": "Daily Digest",
    "version": "1.1.0",
    "author": "Bot Team",
    "description": "Per-chat message counts, summarized every morning",
    "category": "stats",
    "scheduled_tasks": [
        {
            "name": "send",
            "schedule": "0 8 * * *",
            "handler": send_digest,
            "description": "Log yesterday's busiest chats",
        },
    ],
    "init": setup,
    "cleanup": teardown,
}
