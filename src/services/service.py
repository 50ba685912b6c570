"""
Tagging service.

This module wires the registry, the association engine and the query
dispatcher together behind the three public operations: tag, untag, get.
"""
import dataclasses
import logging
from typing import Any, Optional, Union

import redis

from .associations import AssociationEngine
from .query import QueryConditions, QueryDispatcher
from .registry import Resource, ResourceKind, ResourceRegistry
from .settings import ConsistencyMode, TaggingSettings
from .store import connect_redis

logger = logging.getLogger(__name__)


class TaggingService:
    """
    Records and queries user/item/tag associations.

    Usage:
        service = TaggingService.from_settings(TaggingSettings.from_env())

        user = service.resource("user", 1)
        item = service.resource("item", 5)
        tag = service.resource("tag", "ruby")

        service.tag(user, item, tag)
        service.get("tags", scope=user, via=item)   # ["ruby"]
        service.get_for(user, "tags", limit=10)     # user's top 10 tags
        service.get_all("tags")                     # global tag ranking
    """

    def __init__(
        self,
        client: redis.Redis,
        registry: Optional[ResourceRegistry] = None,
        consistency: ConsistencyMode = ConsistencyMode.BEST_EFFORT,
    ):
        """
        Initialize the service.

        Args:
            client: Redis client created with decode_responses=True
            registry: Resource registry (defaults to ResourceRegistry.default())
            consistency: Transaction coverage for tag/untag
        """
        self.client = client
        self.registry = registry or ResourceRegistry.default()
        self.engine = AssociationEngine(client, self.registry, consistency)
        self.dispatcher = QueryDispatcher(client, self.registry)

    @classmethod
    def from_settings(
        cls, settings: TaggingSettings, client: Optional[redis.Redis] = None
    ) -> "TaggingService":
        """
        Build a service from startup settings.

        Args:
            settings: Immutable service configuration
            client: Existing Redis client; one is created from
                settings.redis_url when omitted

        Returns:
            TaggingService
        """
        client = client or connect_redis(settings.redis_url)
        service = cls(client, settings.build_registry(), settings.consistency)
        logger.info(f"TaggingService initialized (consistency={settings.consistency.value})")
        return service

    @property
    def consistency(self) -> ConsistencyMode:
        return self.engine.consistency

    def resource(self, kind: Union[ResourceKind, str], obj: Any) -> Resource:
        """Resolve a model object, mapping or identifier into a Resource."""
        return self.registry.resource(kind, obj)

    def tag(self, user: Resource, item: Resource, tag: Resource) -> bool:
        """Record that user tagged item with tag. See AssociationEngine.tag."""
        return self.engine.tag(user, item, tag)

    def untag(self, user: Resource, item: Resource, tag: Resource) -> bool:
        """Remove a tagging. See AssociationEngine.untag."""
        return self.engine.untag(user, item, tag)

    def get(
        self,
        response_kind: Union[ResourceKind, str],
        conditions: Optional[QueryConditions] = None,
        **kwargs: Any,
    ) -> list[Any]:
        """
        Query resources of response_kind.

        Conditions can be passed as a QueryConditions or as keyword
        arguments (scope, via, limit, with_scores, similar); keyword
        arguments override the matching fields of a passed QueryConditions.

        Examples:
            All tags made by a user:
                service.get("tags", scope=user)

            Tags a user put on an item:
                service.get("tags", scope=user, via=item)

            Items a user tagged with both tags:
                service.get("items", scope=user, via=[ruby, git])

            Items similar to an item:
                service.get("items", scope=item, similar=True, limit=5)
        """
        if conditions is None:
            conditions = QueryConditions(**kwargs)
        elif kwargs:
            conditions = dataclasses.replace(conditions, **kwargs)
        return self.dispatcher.dispatch(response_kind, conditions)

    def get_for(
        self, resource: Resource, response_kind: Union[ResourceKind, str], **kwargs: Any
    ) -> list[Any]:
        """Query scoped to one resource, e.g. get_for(user, "tags", via=item)."""
        return self.get(response_kind, scope=resource, **kwargs)

    def get_all(self, kind: Union[ResourceKind, str], **kwargs: Any) -> list[Any]:
        """
        Kind-level query returning resources of the same kind.

        get_all("tags") returns the global tag ranking; get_all("users",
        via=tag) returns every user who applied tag.
        """
        kind = ResourceKind.parse(kind)
        return self.get(kind, scope=kind, **kwargs)
