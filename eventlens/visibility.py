"""Privacy-tier filtering for event feeds."""

from __future__ import annotations

from collections.abc import Iterable

from .records import PostRecord, Visibility
from .results import Membership
from .utils import same_identity


class VisibilityFilter:
    """Return exactly the posts a resolved viewer may see.

    Filtering is pure and order-preserving. Posts that belong to a different
    event than the membership are dropped whatever their tier.
    """

    def can_view(self, post: PostRecord, membership: Membership) -> bool:
        if not membership.grants_access or post.event_id != membership.event_id:
            return False
        tier = Visibility.coerce(post.visibility)
        if tier is Visibility.PUBLIC:
            return True
        if tier is Visibility.EVENT_ONLY:
            return membership.is_member
        return same_identity(post.author_id, membership.viewer_id)

    def filter_feed(
        self, posts: Iterable[PostRecord], membership: Membership
    ) -> list[PostRecord]:
        if not membership.grants_access:
            return []
        return [post for post in posts if self.can_view(post, membership)]
