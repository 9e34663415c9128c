"""
casedesk Services

Case workflow logic: lifecycle, evaluation vocabularies, notification
fan-out, external chat channel and stale case escalation.
"""

from .lifecycle import CaseLifecycleService, ALLOWED_TRANSITIONS
from .catalog import EvaluationCatalog, CatalogCache, DEFAULT_VOCABULARIES, aggregate_score
from .inbox import NotificationInbox
from .dispatcher import NotificationDispatcher, stale_marker
from .channel import (
    ChannelMessage,
    ChannelWorker,
    TelegramChannel,
    format_product_list,
    render_case_created,
    render_case_transitioned,
    render_stale_case,
)
from .monitor import StaleCaseMonitor

__all__ = [
    # Lifecycle (state machine + assessments)
    "CaseLifecycleService", "ALLOWED_TRANSITIONS",

    # Evaluation vocabularies
    "EvaluationCatalog", "CatalogCache", "DEFAULT_VOCABULARIES", "aggregate_score",

    # Notifications
    "NotificationInbox", "NotificationDispatcher", "stale_marker",

    # External chat channel
    "ChannelMessage", "ChannelWorker", "TelegramChannel",
    "format_product_list", "render_case_created",
    "render_case_transitioned", "render_stale_case",

    # Escalation
    "StaleCaseMonitor",
]
