"""
Quorum Kernel -- Record Parsing Tests

Parsing is total: every document becomes Parsed or Rejected, never an exception.
"""

from datetime import datetime

import pydantic
import pytest

from quorum.kernel.parsing import parse_all, parse_comment, parse_post
from quorum.kernel.types import Parsed, Rejected
from quorum.store.base import DocumentSnapshot
from quorum.tests.factories import BASE_TIME, comment_data, post_data


class TestParsePost:
    def test_maps_stored_fields(self):
        doc = DocumentSnapshot(path="posts/p1", data=post_data("Gravity", topic="Física", favorites=["u2"]))

        result = parse_post(doc)

        assert isinstance(result, Parsed)
        post = result.value
        assert post.id == "p1"
        assert post.title == "Gravity"
        assert post.body == "About Gravity"
        assert post.author_id == "u1"
        assert post.author_label == "u1@example.com"
        assert post.created_at == BASE_TIME
        assert post.topic == "Física"
        assert post.favorites == ("u2",)
        assert post.is_favorited_by("u2")
        assert not post.is_favorited_by("u1")

    def test_favorites_deduplicated_in_order(self):
        doc = DocumentSnapshot(path="posts/p1", data=post_data(favorites=["u3", "u2", "u3"]))

        assert parse_post(doc).value.favorites == ("u3", "u2")

    def test_missing_optional_fields(self):
        doc = DocumentSnapshot(path="posts/p1", data={"title": "Bare", "authorId": "u1"})

        post = parse_post(doc).value

        assert post.body == ""
        assert post.created_at is None
        assert post.topic is None
        assert post.favorites == ()
        assert post.author_label == "Anonymous"

    def test_null_favorites_is_empty(self):
        doc = DocumentSnapshot(path="posts/p1", data=post_data(favorites=None))

        assert parse_post(doc).value.favorites == ()

    def test_unknown_fields_ignored(self):
        doc = DocumentSnapshot(path="posts/p1", data=post_data(likes=3, authorEmail="old@example.com"))

        assert isinstance(parse_post(doc), Parsed)

    def test_missing_author_rejected(self):
        data = post_data()
        del data["authorId"]

        result = parse_post(DocumentSnapshot(path="posts/p1", data=data))

        assert isinstance(result, Rejected)
        assert result.path == "posts/p1"
        assert "authorId" in result.reason

    def test_wrong_types_rejected(self):
        assert isinstance(parse_post(DocumentSnapshot(path="posts/p1", data=post_data(title=42))), Rejected)
        assert isinstance(parse_post(DocumentSnapshot(path="posts/p1", data=post_data(favorites="u2"))), Rejected)
        assert isinstance(parse_post(DocumentSnapshot(path="posts/p1", data=post_data(timestamp="soon"))), Rejected)

    def test_posts_are_immutable(self):
        post = parse_post(DocumentSnapshot(path="posts/p1", data=post_data())).value

        with pytest.raises(pydantic.ValidationError):
            post.title = "changed"


class TestParseComment:
    def test_post_id_from_path(self):
        doc = DocumentSnapshot(path="posts/p1/comments/c1", data=comment_data("Hello"))

        comment = parse_comment(doc).value

        assert comment.id == "c1"
        assert comment.post_id == "p1"
        assert comment.text == "Hello"
        assert isinstance(comment.created_at, datetime)

    def test_stored_post_id_does_not_override_path(self):
        doc = DocumentSnapshot(path="posts/p1/comments/c1", data=comment_data(post_id="p9"))

        assert parse_comment(doc).value.post_id == "p1"

    def test_root_level_comment_rejected(self):
        result = parse_comment(DocumentSnapshot(path="comments/c1", data=comment_data()))

        assert isinstance(result, Rejected)
        assert "post_id" in result.reason

    def test_missing_text_rejected(self):
        data = comment_data()
        del data["text"]

        assert isinstance(parse_comment(DocumentSnapshot(path="posts/p1/comments/c1", data=data)), Rejected)


class TestParseAll:
    def test_keeps_good_records_in_order(self):
        docs = [
            DocumentSnapshot(path="posts/b", data=post_data("B")),
            DocumentSnapshot(path="posts/x", data={"nothing": True}),
            DocumentSnapshot(path="posts/a", data=post_data("A")),
        ]

        assert [p.id for p in parse_all(docs, parse_post)] == ["b", "a"]

    def test_empty(self):
        assert parse_all([], parse_post) == ()
