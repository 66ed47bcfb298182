"""
Pydantic models for Quorum.

All data shapes defined here. No imports from services or controllers.
"""

from quorum.models.auth import AuthContext, AuthProvider
from quorum.models.comment import (
    COMMENTS_COLLECTION,
    Comment,
    CommentWithPost,
    NewComment,
    comments_path,
)
from quorum.models.post import (
    FAVORITES_FIELD,
    POSTS_COLLECTION,
    NewPost,
    Post,
    PostUpdate,
    post_path,
)

__all__ = [
    # Auth
    "AuthContext",
    "AuthProvider",
    # Posts
    "POSTS_COLLECTION",
    "FAVORITES_FIELD",
    "Post",
    "NewPost",
    "PostUpdate",
    "post_path",
    # Comments
    "COMMENTS_COLLECTION",
    "Comment",
    "NewComment",
    "CommentWithPost",
    "comments_path",
]
