"""Conversation context and its persistence backends."""

from loopwright.context.batch import AsyncBatchContextRepository
from loopwright.context.repository import (
    CHECKPOINT_ROLE,
    USAGE_ROLE,
    ContextRepository,
    JsonlContextRepository,
    RestoredContext,
    replay,
)
from loopwright.context.store import Context, checkpoint_marker, create_context, create_repository

__all__ = [
    "AsyncBatchContextRepository",
    "CHECKPOINT_ROLE",
    "Context",
    "ContextRepository",
    "JsonlContextRepository",
    "RestoredContext",
    "USAGE_ROLE",
    "checkpoint_marker",
    "create_context",
    "create_repository",
    "replay",
]
