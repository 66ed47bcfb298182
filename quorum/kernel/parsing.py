"""
Quorum Kernel - Record Parsing

Store documents are schema-free. Every document is parsed explicitly into a
domain model and the outcome is a value: Parsed(model) or Rejected(path, reason).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import TypeVar

import pydantic

from quorum.kernel.types import Parsed, Rejected
from quorum.models.comment import Comment
from quorum.models.post import Post
from quorum.store.base import DocumentSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")

Parser = Callable[[DocumentSnapshot], Parsed[T] | Rejected]


def _describe(error: pydantic.ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "document"
    return f"{location}: {first['msg']}"


def parse_post(doc: DocumentSnapshot) -> Parsed[Post] | Rejected:
    try:
        return Parsed(Post.from_document(doc))
    except pydantic.ValidationError as e:
        return Rejected(doc.path, _describe(e))


def parse_comment(doc: DocumentSnapshot) -> Parsed[Comment] | Rejected:
    try:
        return Parsed(Comment.from_document(doc))
    except pydantic.ValidationError as e:
        return Rejected(doc.path, _describe(e))


def parse_all(records: Iterable[DocumentSnapshot], parse: Parser[T]) -> tuple[T, ...]:
    """Keep well-formed records in order; drop the rest."""
    items: list[T] = []
    for record in records:
        result = parse(record)
        if isinstance(result, Parsed):
            items.append(result.value)
        else:
            logger.debug("parsing: dropped %s (%s)", result.path, result.reason)
    return tuple(items)
