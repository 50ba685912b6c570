"""Query dispatcher for tagging data.

The dispatcher reads the incoming query and sends it to the strategy that
serves that response shape:

    response  via      similar   strategy
    --------  -------  -------   -------------
    tag       absent   -         tags
    tag       present  -         tags_via
    item      -        True      similar_items
    item      present  False     items_via
    item      absent   False     collection
    user      present  -         users_via
    user      absent   -         collection

``via`` narrows a query to associations with another resource, e.g. "tags
from this user on this item" is ``dispatch(TAG, scope=user, via=item)``.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

import redis

from .errors import InvalidResourceKind, InvalidResponseKind, InvalidViaKind
from .registry import Reference, ReferenceArg, Resource, ResourceKind, ResourceRegistry

logger = logging.getLogger(__name__)

# Number of top tags an item must share to count as similar
SIMILAR_TAG_COUNT = 3


@dataclass(frozen=True)
class QueryConditions:
    """Conditions for a query.

    Attributes:
        scope: Resource or kind the query is about
        via: Resource(s) or kind narrowing the results
        limit: Maximum results; 0 or None means unbounded
        with_scores: Return (tag, score) pairs from popularity queries
        similar: Ask for items similar to the item in scope/via
    """
    scope: ReferenceArg = None
    via: ReferenceArg = None
    limit: Optional[int] = None
    with_scores: bool = True
    similar: bool = False


class QueryDispatcher:
    """Serves the read side of the tagging data.

    Stateless: each call depends only on its conditions and the current
    store contents.
    """

    def __init__(self, client: redis.Redis, registry: ResourceRegistry):
        """
        Initialize the dispatcher.

        Args:
            client: Redis client created with decode_responses=True
            registry: Resource registry for kinds and key namespaces
        """
        self.client = client
        self.registry = registry

    def dispatch(
        self,
        response_kind: Union[ResourceKind, str],
        conditions: Optional[QueryConditions] = None,
    ) -> list[Any]:
        """
        Run a query.

        Args:
            response_kind: Kind of resource to return (user, item or tag)
            conditions: Query conditions (scope, via, limit, ...)

        Returns:
            List of identifiers of response_kind; for tag popularity
            queries with scores, a list of (tag, score) pairs

        Raises:
            InvalidResponseKind: If response_kind is not a registered user,
                item or tag kind
            InvalidViaKind: If scope/via do not resolve to registered kinds
        """
        conditions = conditions or QueryConditions()
        try:
            response_kind = ResourceKind.parse(response_kind)
        except InvalidResourceKind:
            raise InvalidResponseKind(
                "Invalid response kind passed to dispatch", kind=response_kind
            ) from None
        if not self.registry.is_registered(response_kind):
            raise InvalidResponseKind(
                "Response kind is not registered", kind=response_kind.value
            )

        via_present = self.registry.resolve_kind(conditions.via) is not None

        if response_kind is ResourceKind.TAG:
            strategy = "tags_via" if via_present else "tags"
            results = self.tags_via(conditions) if via_present else self.tags(conditions)
        elif response_kind is ResourceKind.ITEM:
            if conditions.similar:
                strategy = "similar_items"
                results = self.similar_items(conditions)
            elif via_present:
                strategy = "items_via"
                results = self.items_via(conditions)
            else:
                strategy = "collection"
                results = self.collection(response_kind, conditions)
        else:
            strategy = "users_via" if via_present else "collection"
            results = (
                self.users_via(conditions) if via_present
                else self.collection(response_kind, conditions)
            )

        logger.debug(f"Query {response_kind.value}/{strategy} returned {len(results)} results")
        return results

    def sort_resources(self, conditions: QueryConditions) -> dict[ResourceKind, list[Reference]]:
        """
        Partition scope and via into buckets by kind.

        via is applied after scope, so a via of the same kind replaces it.
        """
        data = {kind: [] for kind in ResourceKind}
        for reference in (conditions.scope, conditions.via):
            kind = self.registry.resolve_kind(reference)
            if kind is not None:
                data[kind] = _as_list(reference)
        return data

    def collection(self, kind: ResourceKind, conditions: QueryConditions) -> list[str]:
        """Members of the scope's set of kind, e.g. a user's items."""
        scope = self._scope(conditions)
        members = list(self.client.smembers(self.registry.key(scope, kind)))
        return _truncate(members, conditions.limit)

    def tags(self, conditions: QueryConditions) -> list[Any]:
        """
        Tags in the scope's popularity set, most used first.

        Returns (name, score) pairs unless with_scores is False.
        """
        scope = self._scope(conditions)
        limit = conditions.limit or 0
        end = limit - 1 if limit > 0 else -1

        return self.client.zrevrange(
            self.registry.key(scope, ResourceKind.TAG),
            0,
            end,
            withscores=conditions.with_scores is not False,
        )

    def tags_via(self, conditions: QueryConditions) -> list[str]:
        """
        Tags a user applied to one item, sorted by name.

        The limit condition is not applied.
        """
        data = self.sort_resources(conditions)
        user = _first_instance(data[ResourceKind.USER])
        item = _first_instance(data[ResourceKind.ITEM])
        if user is None or item is None:
            raise InvalidViaKind("Tags via needs a user and an item")

        raw = self.client.hget(
            self.registry.key(user, ResourceKind.ITEM, ResourceKind.TAG), item.identifier
        )
        tag_names = json.loads(raw) if raw else []
        return sorted(tag_names)

    def items_via(self, conditions: QueryConditions) -> list[str]:
        """
        Items carrying every given tag.

        With a user instance in scope, only that user's taggings count;
        otherwise anyone's.
        """
        data = self.sort_resources(conditions)
        tags = [t for t in data[ResourceKind.TAG] if isinstance(t, Resource)]
        users = data[ResourceKind.USER]

        if users and isinstance(users[0], Resource):
            keys = [
                self.registry.key(users[0], ResourceKind.TAG, tag.identifier, ResourceKind.ITEM)
                for tag in tags
            ]
        else:
            keys = [self.registry.key(tag, ResourceKind.ITEM) for tag in tags]

        return _truncate(self._intersect(keys), conditions.limit)

    def users_via(self, conditions: QueryConditions) -> list[str]:
        """Users associated with every given tag and every given item."""
        data = self.sort_resources(conditions)

        keys = [
            self.registry.key(tag, ResourceKind.USER)
            for tag in data[ResourceKind.TAG] if isinstance(tag, Resource)
        ]
        keys += [
            self.registry.key(item, ResourceKind.USER)
            for item in data[ResourceKind.ITEM] if isinstance(item, Resource)
        ]

        return _truncate(self._intersect(keys), conditions.limit)

    def similar_items(self, conditions: QueryConditions) -> list[str]:
        """
        Items that share this item's top 3 tags.

        Ideally we would match items whose own top tags overlap, but the
        intersection of the seed's top tags is a good enough approximation.
        """
        data = self.sort_resources(conditions)
        seed = _first_instance(data[ResourceKind.ITEM])
        if seed is None:
            raise InvalidViaKind("Similar items needs an item")

        top_tags = self.tags(QueryConditions(
            scope=seed, limit=SIMILAR_TAG_COUNT, with_scores=False,
        ))
        keys = {
            self.registry.key(self.registry.resource(ResourceKind.TAG, name), ResourceKind.ITEM)
            for name in top_tags
        }
        if len(keys) != SIMILAR_TAG_COUNT:
            return []

        items = [i for i in self._intersect(sorted(keys)) if i != seed.identifier]
        return _truncate(items, conditions.limit)

    def _intersect(self, keys: list[str]) -> list[str]:
        if not keys:
            return []
        return list(self.client.sinter(keys))

    def _scope(self, conditions: QueryConditions) -> Reference:
        reference = conditions.scope if _as_list(conditions.scope) else conditions.via
        if self.registry.resolve_kind(reference) is None:
            raise InvalidViaKind("Query needs a scope or via condition")
        return _as_list(reference)[0]


def _as_list(reference: ReferenceArg) -> list[Reference]:
    if reference is None:
        return []
    return list(reference) if isinstance(reference, (list, tuple)) else [reference]


def _first_instance(references: list[Reference]) -> Optional[Resource]:
    if references and isinstance(references[0], Resource):
        return references[0]
    return None


def _truncate(values: list[Any], limit: Optional[int]) -> list[Any]:
    if limit and limit > 0:
        return values[:limit]
    return values
