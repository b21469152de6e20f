"""
Notifications — Slack webhook integration for detection runs.

Notification failure never blocks the pipeline.
"""
import logging
from typing import List

import requests

from event_watch import config

logger = logging.getLogger('services.notifications')

_MAX_LISTED_EVENTS = 10


def notify_detection_complete(stats, events: List[dict] = None):
    """Post a run summary (and the newly accepted events) to Slack."""
    if not config.SLACK_WEBHOOK_URL:
        return

    try:
        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "Event Detection Run Completed"},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Accounts:* {stats.accounts_processed}/{stats.accounts_total}"},
                    {"type": "mrkdwn", "text": f"*Failed accounts:* {stats.accounts_failed}"},
                    {"type": "mrkdwn", "text": f"*Posts classified:* {stats.items_processed}"},
                    {"type": "mrkdwn", "text": f"*Events saved:* {stats.events_persisted}"},
                    {"type": "mrkdwn", "text": f"*Cache hit ratio:* {stats.cache_hit_ratio:.0%}"},
                    {"type": "mrkdwn", "text": f"*Duration:* {stats.duration_seconds:.0f}s"},
                ],
            },
        ]

        for event in (events or [])[:_MAX_LISTED_EVENTS]:
            details = event.get('event_details') or {}
            title = details.get('title') or event.get('event_type') or 'event'
            blocks.append({
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (f"*{title}* by @{event.get('account')} "
                             f"({event.get('confidence_score', 0):.0f}%)\n{event.get('post_url')}"),
                },
            })

        if stats.cancelled:
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": "Run was cancelled before finishing."}],
            })

        requests.post(config.SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)
        logger.info("Detection summary notification sent")

    except Exception:
        logger.error("Failed to send detection summary notification", exc_info=True)


def notify_detection_failed(error):
    """Post a run failure alert to Slack."""
    if not config.SLACK_WEBHOOK_URL:
        return

    try:
        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "Event Detection Run FAILED"},
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"```{str(error)[:500]}```"},
            },
        ]
        requests.post(config.SLACK_WEBHOOK_URL, json={"blocks": blocks}, timeout=10)
        logger.info("Detection failure notification sent")

    except Exception:
        logger.error("Failed to send failure notification", exc_info=True)
