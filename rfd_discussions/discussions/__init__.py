"""Discussion reconciliation for RFD Discussions."""

from .links import (
    build_deep_link,
    build_direct_link,
    build_discussion_url,
    extract_room_id,
    is_valid_discussion_url,
    slugify,
)
from .manager import DiscussionManager, ReconcileResult

__all__ = [
    "DiscussionManager",
    "ReconcileResult",
    "build_deep_link",
    "build_direct_link",
    "build_discussion_url",
    "extract_room_id",
    "is_valid_discussion_url",
    "slugify",
]
