"""
Tests for the screen controllers, end to end over the memory store.

Every mutation here is fire-and-continue: the controller returns a task, and
the visible result arrives through the screen's own live query.
"""

from __future__ import annotations

import asyncio

import pytest

from quorum.auth import TokenAuthProvider, create_session_token
from quorum.controllers import (
    FavoritesController,
    HomeController,
    PostDetailController,
    ProfileController,
)
from quorum.errors import ValidationError
from quorum.services.comment_join import CommentJoinEngine
from quorum.store.base import StoreError
from quorum.tests.factories import comment_data, post_data


SECRET = "test-secret-key-for-testing-only"


def loaded(state):
    return not state.is_loading


def titles(state):
    return [item.title for item in state.items]


# ============================================================================
# End-to-end scenarios
# ============================================================================


class TestScenarios:
    async def test_create_post_appears_on_home(self, store, queries, u1):
        async with HomeController(queries, u1) as home:
            await home.wait_for(loaded)
            assert home.state.items == ()

            result = await home.create_post("Gravity", "Notes on gravity", "Física")
            state = await home.wait_for(lambda s: len(s.items) == 1)

            assert result is None
            post = state.items[0]
            assert post.title == "Gravity"
            assert post.author_id == "u1"
            assert post.favorites == ()
            assert state.error is None

    async def test_favorite_toggle_round_trip(self, store, queries, u2):
        store.put("posts/p1", post_data("Gravity", author_id="u1"))

        async with HomeController(queries, u2) as home:
            state = await home.wait_for(lambda s: len(s.items) == 1)

            await home.toggle_favorite(state.items[0])
            state = await home.wait_for(lambda s: s.items[0].favorites == ("u2",))

            await home.toggle_favorite(state.items[0])
            state = await home.wait_for(lambda s: s.items[0].favorites == ())

            assert store.write_count == 2

    async def test_empty_comment_rejected_locally(self, store, queries, u1):
        store.put("posts/p1", post_data())

        async with PostDetailController(queries, u1, "p1") as detail:
            await detail.wait_for(loaded)

            result = await detail.add_comment("")
            state = await detail.wait_for(lambda s: s.error is not None)

            assert isinstance(result, ValidationError)
            assert state.error == "Comment cannot be empty"
            assert store.write_count == 0


# ============================================================================
# Home
# ============================================================================


class TestHome:
    async def test_newest_first(self, store, queries):
        store.put("posts/a", post_data("Old", minutes=1))
        store.put("posts/b", post_data("New", minutes=5))

        async with HomeController(queries) as home:
            state = await home.wait_for(loaded)

            assert titles(state) == ["New", "Old"]

    async def test_topic_change_resubscribes(self, store, queries):
        store.put("posts/a", post_data("Atoms", topic="Química", minutes=1))
        store.put("posts/b", post_data("Gravity", topic="Física", minutes=2))
        store.put("posts/c", post_data("Stars", topic="Astronomía", minutes=3))

        async with HomeController(queries) as home:
            await home.wait_for(lambda s: len(s.items) == 3)
            first = home.subscription

            home.select_topic("Física")
            state = await home.wait_for(lambda s: loaded(s) and titles(s) == ["Gravity"])

            assert first.released
            assert queries.active("home") is home.subscription
            assert store.listener_count == 1
            assert state.error is None

            home.select_topic(None)
            await home.wait_for(lambda s: loaded(s) and len(s.items) == 3)
            assert store.listener_count == 1

    async def test_select_same_topic_is_noop(self, store, queries):
        async with HomeController(queries, topic="Física") as home:
            await home.wait_for(loaded)
            subscription = home.subscription

            home.select_topic("Física")

            assert home.subscription is subscription
            assert not home.state.is_loading

    async def test_listen_failure_keeps_items(self, store, queries):
        store.put("posts/a", post_data("Gravity"))

        async with HomeController(queries) as home:
            await home.wait_for(lambda s: len(s.items) == 1)

            store.notify_error(StoreError("Missing or insufficient permissions", code="permission-denied"))
            state = await home.wait_for(lambda s: s.error is not None)

            assert state.error == "Could not load posts: Missing or insufficient permissions"
            assert titles(state) == ["Gravity"]
            assert not state.is_loading

            # Recovers with the next snapshot
            store.put("posts/b", post_data("Orbits", minutes=1))
            state = await home.wait_for(lambda s: s.error is None)
            assert titles(state) == ["Orbits", "Gravity"]

    async def test_clear_policy(self, store, queries):
        store.put("posts/a", post_data("Gravity"))

        async with HomeController(queries, on_failure="clear") as home:
            await home.wait_for(lambda s: len(s.items) == 1)

            store.notify_error(StoreError("offline", code="unavailable"))
            state = await home.wait_for(lambda s: s.error is not None)

            assert state.items == ()

    async def test_write_failure_reported_on_screen(self, store, queries, u1):
        store.put("posts/a", post_data("Gravity"))

        async with HomeController(queries, u1) as home:
            await home.wait_for(lambda s: len(s.items) == 1)
            store.fail_writes = StoreError("offline", code="unavailable")

            await home.create_post("Orbits", "", None)
            state = await home.wait_for(lambda s: s.error is not None)

            assert state.error == "Could not create post: offline"
            assert titles(state) == ["Gravity"]

    async def test_update_and_delete(self, store, queries, u1):
        store.put("posts/a", post_data("Gravity"))

        async with HomeController(queries, u1) as home:
            await home.wait_for(lambda s: len(s.items) == 1)

            await home.update_post("a", {"title": "Gravity, revised"})
            await home.wait_for(lambda s: titles(s) == ["Gravity, revised"])

            await home.delete_post("a")
            state = await home.wait_for(lambda s: s.items == ())
            assert state.error is None

    async def test_create_without_auth(self, store, queries):
        async with HomeController(queries) as home:
            await home.wait_for(loaded)

            await home.create_post("Gravity", "", None)
            state = await home.wait_for(lambda s: s.error is not None)

            assert state.error == "You must be signed in to post"
            assert store.write_count == 0

    async def test_listeners_see_every_version(self, store, queries, u1):
        seen = []

        async with HomeController(queries, u1) as home:
            remove = home.add_listener(lambda s: seen.append(s.version))
            await home.wait_for(loaded)
            await home.create_post("Gravity", "", None)
            await home.wait_for(lambda s: len(s.items) == 1)
            remove()
            await home.create_post("Orbits", "", None)
            await home.wait_for(lambda s: len(s.items) == 2)

        assert seen == sorted(seen)
        assert len(seen) == len(set(seen))
        assert home.state.version > seen[-1]


# ============================================================================
# Lifecycle
# ============================================================================


class TestLifecycle:
    async def test_close_releases_subscription(self, store, queries):
        home = HomeController(queries)
        await home.wait_for(loaded)
        assert store.listener_count == 1

        await home.close()
        await home.close()

        assert store.listener_count == 0
        assert queries.active("home") is None

    async def test_no_updates_after_close(self, store, queries):
        home = HomeController(queries)
        state = await home.wait_for(loaded)
        await home.close()

        store.put("posts/a", post_data())
        await asyncio.sleep(0.01)

        assert home.state is state

    async def test_revisiting_does_not_leak(self, store, queries):
        for _ in range(3):
            async with HomeController(queries) as home:
                await home.wait_for(loaded)

        assert store.listener_count == 0

    async def test_reopen_while_old_screen_open(self, store, queries):
        old = HomeController(queries)
        new = HomeController(queries)
        await new.wait_for(loaded)

        assert old.subscription.released
        assert store.listener_count == 1

        await old.close()
        # Closing the replaced screen does not touch the new one
        assert queries.active("home") is new.subscription
        await new.close()

    async def test_close_waits_for_mutations(self, store, queries, u1):
        home = HomeController(queries, u1)
        home.create_post("Gravity", "", None)

        await home.close()

        assert store.write_count == 1

    async def test_failing_listener_does_not_stop_screen(self, store, queries):
        def broken(state):
            raise RuntimeError("render bug")

        home = HomeController(queries)
        remove = home.add_listener(broken)
        await home.wait_for(loaded)

        store.put("posts/a", post_data("Gravity", minutes=1))
        await home.wait_for(lambda s: len(s.items) == 1)
        remove()
        store.put("posts/b", post_data("Orbits", minutes=2))
        state = await home.wait_for(lambda s: len(s.items) == 2)

        assert titles(state) == ["Orbits", "Gravity"]
        assert not home._pump.done()
        await home.close()
        assert store.listener_count == 0

    async def test_wait_for_times_out(self, store, queries):
        async with HomeController(queries) as home:
            with pytest.raises(TimeoutError):
                await home.wait_for(lambda s: len(s.items) == 5, timeout=0.05)


# ============================================================================
# Favorites
# ============================================================================


class TestFavorites:
    async def test_only_favorited_posts(self, store, queries, u2):
        store.put("posts/a", post_data("Gravity", favorites=["u2"], minutes=1))
        store.put("posts/b", post_data("Orbits", favorites=["u3"], minutes=2))

        async with FavoritesController(queries, u2) as favorites:
            state = await favorites.wait_for(loaded)

            assert titles(state) == ["Gravity"]

    async def test_follows_toggles_from_another_screen(self, store, queries, u2):
        store.put("posts/a", post_data("Gravity", minutes=1))

        async with FavoritesController(queries, u2) as favorites:
            await favorites.wait_for(loaded)

            async with HomeController(queries, u2) as home:
                state = await home.wait_for(lambda s: len(s.items) == 1)
                await home.toggle_favorite(state.items[0])

            state = await favorites.wait_for(lambda s: titles(s) == ["Gravity"])
            assert state.items[0].is_favorited_by("u2")

            # Un-favorite from the favorites screen itself
            await favorites.toggle_favorite(state.items[0])
            await favorites.wait_for(lambda s: s.items == ())

    async def test_signed_out(self, store, queries):
        async with FavoritesController(queries) as favorites:
            state = favorites.state

            assert state.items == ()
            assert not state.is_loading
            assert state.error == "Sign in to see your favorites"
            assert favorites.subscription is None
            assert store.listener_count == 0


# ============================================================================
# Post detail
# ============================================================================


class TestPostDetail:
    async def test_comments_oldest_first(self, store, queries, u1):
        store.put("posts/p1", post_data())
        store.put("posts/p1/comments/c2", comment_data("Second", minutes=2))
        store.put("posts/p1/comments/c1", comment_data("First", minutes=1))
        store.put("posts/p2/comments/c3", comment_data("Elsewhere", minutes=0))

        async with PostDetailController(queries, u1, "p1") as detail:
            state = await detail.wait_for(loaded)

            assert [c.text for c in state.items] == ["First", "Second"]
            assert {c.post_id for c in state.items} == {"p1"}

    async def test_added_comment_appears(self, store, queries, u1):
        store.put("posts/p1", post_data())

        async with PostDetailController(queries, u1, "p1") as detail:
            await detail.wait_for(loaded)

            assert await detail.add_comment("Great post") is None
            state = await detail.wait_for(lambda s: len(s.items) == 1)

            assert state.items[0].text == "Great post"
            assert state.items[0].author_id == "u1"

    async def test_keys_per_post(self, store, queries, u1):
        async with PostDetailController(queries, u1, "p1") as one, PostDetailController(queries, u1, "p2") as two:
            await one.wait_for(loaded)
            await two.wait_for(loaded)

            assert queries.active_keys == ["post:p1", "post:p2"]


# ============================================================================
# Profile
# ============================================================================


class TestProfile:
    async def test_posts_and_comments(self, store, queries, u1):
        store.put("posts/p1", post_data("Gravity", author_id="u1", minutes=1))
        store.put("posts/p2", post_data("Orbits", author_id="u2", minutes=2))
        store.put("posts/p2/comments/c1", comment_data("Nice orbit", author_id="u1", minutes=3))

        async with ProfileController(queries, u1) as profile:
            posts = await profile.wait_for(loaded)
            comments = await profile.wait_for_comments(loaded)

            assert titles(posts) == ["Gravity"]
            assert [(r.comment.text, r.post_title, r.post_id) for r in comments.items] == [
                ("Nice orbit", "Orbits", "p2")
            ]

    async def test_reload_comments(self, store, queries, u1):
        store.put("posts/p1", post_data("Gravity"))

        async with ProfileController(queries, u1) as profile:
            await profile.wait_for_comments(loaded)
            assert profile.comments_state.items == ()

            store.put("posts/p1/comments/c1", comment_data("Later", author_id="u1"))
            await profile.load_comments()

            state = await profile.wait_for_comments(lambda s: len(s.items) == 1)
            assert state.items[0].post_title == "Gravity"

    async def test_comments_query_failure(self, store, queries, u1):
        store.put("posts/p1", post_data("Gravity"))
        store.fail_queries = StoreError("The query requires an index", code="failed-precondition")

        async with ProfileController(queries, u1) as profile:
            state = await profile.wait_for_comments(loaded)

            assert state.items == ()
            assert state.error == "Could not load your comments: The query requires an index"
            # The live posts query is unaffected
            posts = await profile.wait_for(loaded)
            assert titles(posts) == ["Gravity"]

    async def test_unordered_join(self, store, queries, u1):
        store.put("posts/p1", post_data("Gravity"))
        store.put("posts/p1/comments/c1", comment_data("One", author_id="u1", minutes=1))
        store.put("posts/p1/comments/c2", comment_data("Two", author_id="u1", minutes=2))

        join = CommentJoinEngine(store, ordered=False)
        async with ProfileController(queries, u1, join=join) as profile:
            state = await profile.wait_for_comments(lambda s: len(s.items) == 2)

            assert sorted(r.comment.text for r in state.items) == ["One", "Two"]

    async def test_signed_out(self, store, queries):
        async with ProfileController(queries) as profile:
            assert profile.state.error == "Sign in to see your profile"
            assert not profile.state.is_loading
            assert not profile.comments_state.is_loading
            assert profile.comments_state.items == ()
            assert store.listener_count == 0

    async def test_stale_comments_load_discarded(self, store, queries, u1):
        read, gate = asyncio.Event(), asyncio.Event()

        class SlowFirstJoin(CommentJoinEngine):
            calls = 0

            async def comments_by_author(self, user_id):
                SlowFirstJoin.calls += 1
                rows = await super().comments_by_author(user_id)
                if SlowFirstJoin.calls == 1:
                    read.set()
                    await gate.wait()
                return rows

        store.put("posts/p1", post_data("Gravity"))
        profile = ProfileController(queries, u1, join=SlowFirstJoin(store))
        await asyncio.wait_for(read.wait(), 1.0)

        store.put("posts/p1/comments/c1", comment_data("Later", author_id="u1"))
        await profile.load_comments()
        state = await profile.wait_for_comments(lambda s: len(s.items) == 1)
        assert not state.is_loading

        # The first load now finishes with the empty result it read earlier
        gate.set()
        await profile.close()

        assert SlowFirstJoin.calls == 2
        assert [r.comment.text for r in profile.comments_state.items] == ["Later"]


# ============================================================================
# Opening screens from an auth provider
# ============================================================================


class TestFromProvider:
    async def test_home_posts_as_signed_in_user(self, store, queries, u1):
        provider = TokenAuthProvider(create_session_token(u1, secret=SECRET), secret=SECRET)

        async with HomeController.from_provider(queries, provider) as home:
            await home.wait_for(loaded)
            await home.create_post("Gravity", "", None)
            state = await home.wait_for(lambda s: len(s.items) == 1)

            assert home.auth == u1
            assert state.items[0].author_id == "u1"

    async def test_signed_out_provider(self, store, queries):
        async with FavoritesController.from_provider(queries, TokenAuthProvider()) as favorites:
            assert favorites.auth is None
            assert favorites.state.error == "Sign in to see your favorites"

    async def test_extra_arguments_pass_through(self, store, queries, u1):
        store.put("posts/p1", post_data())
        provider = TokenAuthProvider(create_session_token(u1, secret=SECRET), secret=SECRET)

        async with PostDetailController.from_provider(queries, provider, "p1") as detail:
            await detail.wait_for(loaded)

            assert detail.key == "post:p1"
            assert detail.auth == u1
