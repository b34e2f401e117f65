"""
Notify module for the cbcheck poller.

This module announces newly discovered funds on Slack through an incoming
webhook. Each fund gets its own message: the fund name as text and one
attachment with the subtitle, a link to the fund page, the description and
seven short fields (region, project, open/close dates, rate, raise method,
currency).

A fund is recorded in the dedup store only after its webhook post
succeeded, so a failed post is retried on the next run. If the post
succeeds but recording fails, the fund will be announced again next time.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from cbcheck.fetch import Fund
from cbcheck.storage import SendListStore, StorageError
from cbcheck.utils import get_logger


# Module logger
logger = get_logger("notify")

# Attachment field labels, in display order
FIELD_REGION = "地域"
FIELD_PROJECT = "プロジェクト"
FIELD_OPEN_TIME = "募集開始日"
FIELD_CLOSE_TIME = "募集終了日"
FIELD_RATE = "利率"
FIELD_RAISE_METHOD = "募集方法"
FIELD_CURRENCY = "通貨"

FIELD_TITLES = [
    FIELD_REGION,
    FIELD_PROJECT,
    FIELD_OPEN_TIME,
    FIELD_CLOSE_TIME,
    FIELD_RATE,
    FIELD_RAISE_METHOD,
    FIELD_CURRENCY,
]


class WebhookError(Exception):
    """Raised when posting a message to the Slack webhook fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class NotifySummary:
    """Per-run counters for the notify loop."""
    total: int = 0
    skipped: int = 0
    sent: int = 0
    failed: int = 0
    persist_failed: int = 0
    would_send: int = 0


def _field(title: str, value: str) -> Dict[str, Any]:
    return {"title": title, "value": value, "short": True}


def build_fields(fund: Fund) -> List[Dict[str, Any]]:
    """
    Build the seven attachment fields for a fund, in display order.

    Args:
        fund: Fund to describe.

    Returns:
        List of Slack attachment field dictionaries.
    """
    return [
        _field(FIELD_REGION, fund.region_name),
        _field(FIELD_PROJECT, fund.project_name),
        _field(FIELD_OPEN_TIME, fund.open_time),
        _field(FIELD_CLOSE_TIME, fund.close_time),
        _field(FIELD_RATE, fund.rate + "%"),
        _field(FIELD_RAISE_METHOD, fund.raise_method),
        _field(FIELD_CURRENCY, fund.currency),
    ]


def build_webhook_message(fund: Fund) -> Dict[str, Any]:
    """
    Format the Slack webhook payload announcing a fund.

    Args:
        fund: Newly discovered fund.

    Returns:
        JSON-serialisable webhook message.
    """
    return {
        "text": fund.name,
        "attachments": [
            {
                "title": fund.subtitle,
                "title_link": fund.link,
                "text": fund.description,
                "fields": build_fields(fund),
                "mrkdwn_in": ["text"],
            }
        ],
    }


def post_webhook(session: requests.Session, webhook_url: str, message: Dict[str, Any]) -> None:
    """
    POST a message to a Slack incoming webhook.

    Args:
        session: requests session to send with.
        webhook_url: Full webhook URL from the config file.
        message: Payload built by build_webhook_message.

    Raises:
        WebhookError: If the request fails or the webhook answers non-2xx.
    """
    try:
        response = session.post(webhook_url, json=message)
    except requests.exceptions.RequestException as e:
        raise WebhookError(f"Webhook request failed: {e}") from e

    if not 200 <= response.status_code < 300:
        raise WebhookError(
            f"Webhook returned HTTP {response.status_code}: {response.text[:200]}",
            status_code=response.status_code
        )


def notify_new_funds(
    funds: List[Fund],
    store: SendListStore,
    session: requests.Session,
    webhook_url: str,
    dry_run: bool = False
) -> NotifySummary:
    """
    Announce every fund that has not been announced before.

    Funds are processed in the order given. A failure for one fund is
    logged and does not stop the others.

    If the dedup lookup itself fails, the fund is skipped for this run
    instead of posted. Earlier versions of the poller treated a failed lookup
    as "not sent" and posted anyway, leaning towards at-least-once delivery.
    Skipping keeps a broken database from re-announcing the same fund on
    every run.

    Args:
        funds: Funds returned by the search API.
        store: Dedup store of already announced fund ids.
        session: requests session used for the webhook posts.
        webhook_url: Slack incoming webhook URL.
        dry_run: If True, log the messages instead of posting or recording.

    Returns:
        NotifySummary with per-outcome counts.
    """
    summary = NotifySummary(total=len(funds))

    for fund in funds:
        try:
            already_sent = store.exists(fund.id)
        except StorageError as e:
            logger.error(f"Failed to look up fund {fund.id}, skipping: {e}")
            summary.failed += 1
            continue

        if already_sent:
            logger.debug(f"Fund {fund.id} already notified, skipping")
            summary.skipped += 1
            continue

        message = build_webhook_message(fund)

        if dry_run:
            logger.info(f"[DRY RUN] Would notify fund {fund.id}: {fund.name}")
            logger.debug(f"[DRY RUN] Message: {message}")
            summary.would_send += 1
            continue

        try:
            post_webhook(session, webhook_url, message)
        except WebhookError as e:
            logger.error(f"Failed to post webhook for fund {fund.id}: {e}")
            summary.failed += 1
            continue

        summary.sent += 1
        logger.info(f"Notified fund {fund.id}: {fund.name}")

        try:
            store.insert(fund.id)
        except StorageError as e:
            logger.error(f"Failed to save fund {fund.id} to database: {e}")
            summary.persist_failed += 1

    return summary
