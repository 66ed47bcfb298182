"""
Services: the stateful parts of the sync core.

  live_query    - store push callbacks → async event streams, one per key
  mutations     - writes, with failures routed to the owning screen
  comment_join  - "my comments" with parent post titles
"""

from quorum.services.comment_join import CommentJoinEngine
from quorum.services.live_query import LiveQueryManager, Subscription
from quorum.services.mutations import MutationDispatcher

__all__ = [
    "CommentJoinEngine",
    "LiveQueryManager",
    "MutationDispatcher",
    "Subscription",
]
