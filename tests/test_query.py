"""
Tests for the query dispatcher.
"""
import pytest
from unittest.mock import patch

from src.services.errors import InvalidResourceKind, InvalidResponseKind, InvalidViaKind
from src.services.query import QueryConditions, QueryDispatcher
from src.services.registry import ResourceKind, ResourceRegistry


@pytest.fixture
def tagged(engine, make):
    """
    Seed a small tagging graph.

    user 1: item 5 [ruby, git, python], item 6 [ruby, git], item 7 [ruby]
    user 2: item 5 [ruby], item 8 [ruby, git, python], item 9 [ruby, git]
    """
    taggings = [
        (1, 5, "ruby"), (1, 5, "git"), (1, 5, "python"),
        (1, 6, "ruby"), (1, 6, "git"),
        (1, 7, "ruby"),
        (2, 5, "ruby"),
        (2, 8, "ruby"), (2, 8, "git"), (2, 8, "python"),
        (2, 9, "ruby"), (2, 9, "git"),
    ]
    for user_id, item_id, tag_name in taggings:
        engine.tag(make("user", user_id), make("item", item_id), make("tag", tag_name))
    return taggings


class TestDispatchRouting:
    """Tests for choosing a strategy."""

    @pytest.mark.parametrize("response_kind,conditions,strategy", [
        ("tags", {"scope": "user"}, "tags"),
        ("tags", {"scope": "user", "via": "item"}, "tags_via"),
        ("items", {"scope": "item", "similar": True}, "similar_items"),
        ("items", {"scope": "item", "via": "tag", "similar": True}, "similar_items"),
        ("items", {"scope": "user", "via": "tag"}, "items_via"),
        ("users", {"scope": "item", "via": "tag"}, "users_via"),
    ])
    def test_routes_to_strategy(self, dispatcher, make, response_kind, conditions, strategy):
        refs = {"user": make("user", 1), "item": make("item", 5), "tag": make("tag", "ruby")}
        resolved = {k: refs[v] if k in ("scope", "via") else v for k, v in conditions.items()}

        with patch.object(dispatcher, strategy, return_value=["sentinel"]) as mock_strategy:
            result = dispatcher.dispatch(response_kind, QueryConditions(**resolved))

        assert result == ["sentinel"]
        mock_strategy.assert_called_once()

    @pytest.mark.parametrize("response_kind", [ResourceKind.ITEM, ResourceKind.USER])
    def test_routes_to_collection_without_via(self, dispatcher, user, response_kind):
        with patch.object(dispatcher, "collection", return_value=[]) as mock_collection:
            dispatcher.dispatch(response_kind, QueryConditions(scope=user))

        mock_collection.assert_called_once_with(response_kind, QueryConditions(scope=user))

    def test_invalid_response_kind(self, dispatcher, user):
        with pytest.raises(InvalidResponseKind) as exc_info:
            dispatcher.dispatch("comments", QueryConditions(scope=user))

        assert isinstance(exc_info.value, InvalidResourceKind)

    def test_unregistered_response_kind(self, redis_client):
        """Test that a known but unregistered kind is rejected instead of read."""
        registry = (
            ResourceRegistry()
            .register(ResourceKind.USER, "id")
            .register(ResourceKind.TAG, "name")
        )
        dispatcher = QueryDispatcher(redis_client, registry)

        with pytest.raises(InvalidResponseKind):
            dispatcher.dispatch("items", QueryConditions(scope=registry.resource("user", 1)))

    def test_invalid_via(self, dispatcher, user):
        with pytest.raises(InvalidViaKind):
            dispatcher.dispatch("tags", QueryConditions(scope=user, via={"id": 5}))

    def test_missing_scope(self, dispatcher):
        with pytest.raises(InvalidViaKind):
            dispatcher.dispatch("items")

    def test_via_alone_is_used_as_scope(self, dispatcher, tagged, make):
        items = dispatcher.collection(ResourceKind.ITEM, QueryConditions(via=make("user", 2)))
        assert sorted(items) == ["5", "8", "9"]


class TestSortResources:
    """Tests for bucketing scope and via by kind."""

    def test_buckets_by_kind(self, dispatcher, make):
        user = make("user", 1)
        tags = [make("tag", "ruby"), make("tag", "git")]

        data = dispatcher.sort_resources(QueryConditions(scope=user, via=tags))

        assert data[ResourceKind.USER] == [user]
        assert data[ResourceKind.TAG] == tags
        assert data[ResourceKind.ITEM] == []

    def test_via_replaces_scope_of_same_kind(self, dispatcher, make):
        data = dispatcher.sort_resources(QueryConditions(
            scope=make("tag", "ruby"), via=make("tag", "git"),
        ))

        assert data[ResourceKind.TAG] == [make("tag", "git")]

    def test_kind_reference_lands_in_bucket(self, dispatcher, make):
        data = dispatcher.sort_resources(QueryConditions(
            scope=ResourceKind.USER, via=make("tag", "ruby"),
        ))

        assert data[ResourceKind.USER] == [ResourceKind.USER]


class TestCollection:
    """Tests for plain set queries."""

    def test_user_items(self, dispatcher, tagged, make):
        items = dispatcher.dispatch("items", QueryConditions(scope=make("user", 1)))
        assert sorted(items) == ["5", "6", "7"]

    def test_item_users(self, dispatcher, tagged, make):
        users = dispatcher.dispatch("users", QueryConditions(scope=make("item", 5)))
        assert sorted(users) == ["1", "2"]

    def test_limit(self, dispatcher, tagged, make):
        items = dispatcher.dispatch("items", QueryConditions(scope=make("user", 1), limit=2))

        assert len(items) == 2
        assert set(items) <= {"5", "6", "7"}

    @pytest.mark.parametrize("limit", [None, 0])
    def test_no_limit_is_unbounded(self, dispatcher, tagged, make, limit):
        items = dispatcher.dispatch("items", QueryConditions(scope=make("user", 1), limit=limit))
        assert len(items) == 3

    def test_empty_set(self, dispatcher, make):
        assert dispatcher.dispatch("items", QueryConditions(scope=make("user", 404))) == []


class TestTags:
    """Tests for popularity rankings."""

    def test_user_ranking_with_scores(self, dispatcher, tagged, make):
        ranking = dispatcher.dispatch("tags", QueryConditions(scope=make("user", 1)))
        assert ranking == [("ruby", 3.0), ("git", 2.0), ("python", 1.0)]

    def test_without_scores(self, dispatcher, tagged, make):
        ranking = dispatcher.dispatch("tags", QueryConditions(scope=make("user", 1), with_scores=False))
        assert ranking == ["ruby", "git", "python"]

    def test_limit(self, dispatcher, tagged, make):
        ranking = dispatcher.dispatch("tags", QueryConditions(scope=make("user", 1), limit=2))
        assert ranking == [("ruby", 3.0), ("git", 2.0)]

    @pytest.mark.parametrize("limit", [None, 0, -1])
    def test_no_limit_is_unbounded(self, dispatcher, tagged, make, limit):
        ranking = dispatcher.dispatch("tags", QueryConditions(scope=make("user", 1), limit=limit))
        assert ranking == [("ruby", 3.0), ("git", 2.0), ("python", 1.0)]

    def test_item_ranking_counts_users(self, dispatcher, tagged, make):
        ranking = dispatcher.dispatch("tags", QueryConditions(scope=make("item", 5)))
        assert ranking[0] == ("ruby", 2.0)

    def test_global_ranking(self, dispatcher, tagged):
        ranking = dispatcher.dispatch("tags", QueryConditions(scope=ResourceKind.TAG))
        assert ranking == [("ruby", 6.0), ("git", 4.0), ("python", 2.0)]


class TestTagsVia:
    """Tests for the tags one user put on one item."""

    def test_sorted_by_name(self, dispatcher, tagged, make):
        tags = dispatcher.dispatch("tags", QueryConditions(scope=make("user", 1), via=make("item", 5)))
        assert tags == ["git", "python", "ruby"]

    def test_ignores_limit(self, dispatcher, tagged, make):
        tags = dispatcher.dispatch("tags", QueryConditions(
            scope=make("user", 1), via=make("item", 5), limit=1,
        ))
        assert len(tags) == 3

    def test_scope_and_via_can_swap(self, dispatcher, tagged, make):
        tags = dispatcher.dispatch("tags", QueryConditions(scope=make("item", 6), via=make("user", 1)))
        assert tags == ["git", "ruby"]

    def test_untagged_pair(self, dispatcher, tagged, make):
        tags = dispatcher.dispatch("tags", QueryConditions(scope=make("user", 2), via=make("item", 6)))
        assert tags == []

    def test_requires_user_instance(self, dispatcher, make):
        with pytest.raises(InvalidViaKind):
            dispatcher.dispatch("tags", QueryConditions(scope=ResourceKind.USER, via=make("item", 5)))


class TestItemsVia:
    """Tests for items carrying all given tags."""

    def test_one_tag_matches_tag_items(self, dispatcher, tagged, make, redis_client):
        items = dispatcher.dispatch("items", QueryConditions(via=make("tag", "python")))
        assert sorted(items) == sorted(redis_client.smembers("TAGS:python:ITEMS"))

    def test_two_tags_intersect(self, dispatcher, tagged, make):
        items = dispatcher.dispatch("items", QueryConditions(
            via=[make("tag", "git"), make("tag", "python")],
        ))
        assert sorted(items) == ["5", "8"]

    def test_user_scope_restricts_to_user_taggings(self, dispatcher, tagged, make):
        items = dispatcher.dispatch("items", QueryConditions(
            scope=make("user", 1), via=[make("tag", "ruby"), make("tag", "git")],
        ))
        assert sorted(items) == ["5", "6"]

    def test_user_kind_scope_is_global(self, dispatcher, tagged, make):
        items = dispatcher.dispatch("items", QueryConditions(
            scope=ResourceKind.USER, via=make("tag", "git"),
        ))
        assert sorted(items) == ["5", "6", "8", "9"]

    def test_limit(self, dispatcher, tagged, make):
        items = dispatcher.dispatch("items", QueryConditions(via=make("tag", "ruby"), limit=2))
        assert len(items) == 2

    def test_no_tags_returns_empty(self, dispatcher, tagged, make):
        items = dispatcher.dispatch("items", QueryConditions(scope=make("user", 1), via=make("user", 1)))
        assert items == []


class TestUsersVia:
    """Tests for users associated with all given tags and items."""

    def test_users_of_tag(self, dispatcher, tagged, make):
        users = dispatcher.dispatch("users", QueryConditions(via=make("tag", "python")))
        assert sorted(users) == ["1", "2"]

    def test_tag_and_item_intersect(self, dispatcher, tagged, make):
        users = dispatcher.dispatch("users", QueryConditions(
            scope=make("item", 6), via=make("tag", "git"),
        ))
        assert users == ["1"]

    def test_limit(self, dispatcher, tagged, make):
        users = dispatcher.dispatch("users", QueryConditions(via=make("tag", "ruby"), limit=1))
        assert len(users) == 1


class TestSimilarItems:
    """Tests for items sharing an item's top 3 tags."""

    def test_shares_top_three_tags(self, dispatcher, tagged, make):
        items = dispatcher.dispatch("items", QueryConditions(scope=make("item", 5), similar=True))
        assert items == ["8"]

    def test_never_includes_seed(self, dispatcher, tagged, make):
        items = dispatcher.dispatch("items", QueryConditions(scope=make("item", 8), similar=True))

        assert "8" not in items
        assert items == ["5"]

    def test_fewer_than_three_tags(self, dispatcher, tagged, make):
        items = dispatcher.dispatch("items", QueryConditions(scope=make("item", 6), similar=True))
        assert items == []

    def test_untagged_item(self, dispatcher, make):
        items = dispatcher.dispatch("items", QueryConditions(scope=make("item", 404), similar=True))
        assert items == []

    def test_limit(self, dispatcher, tagged, engine, make):
        for item_id in (10, 11):
            for tag_name in ("ruby", "git", "python"):
                engine.tag(make("user", 3), make("item", item_id), make("tag", tag_name))

        items = dispatcher.dispatch("items", QueryConditions(scope=make("item", 5), similar=True, limit=2))

        assert len(items) == 2
        assert "5" not in items

    def test_requires_item(self, dispatcher, make):
        with pytest.raises(InvalidViaKind):
            dispatcher.dispatch("items", QueryConditions(scope=ResourceKind.ITEM, similar=True))
