"""Association engine for user/item/tag taggings.

Every tag/untag call keeps these Redis structures in step:

    USERS:{u}:ITEMS              set         items tagged by user u
    ITEMS:{i}:USERS              set         users who tagged item i
    TAGS:{t}:USERS               set         users who applied tag t
    TAGS:{t}:ITEMS               set         items carrying tag t
    USERS:{u}:TAGS:{t}:ITEMS     set         items user u tagged with t
    USERS:{u}:TAGS               sorted set  tag -> distinct items tagged by u
    ITEMS:{i}:TAGS               sorted set  tag -> distinct users tagging i
    TAGS:TAGS                    sorted set  tag -> tag calls (not de-duplicated)
    USERS:{u}:ITEMS:TAGS         hash        item -> JSON list of u's tags on it

Per-user and per-item counters only move when the scoped set actually
changes; the global counter moves on every call.
"""
import json
import logging
from dataclasses import dataclass
from typing import Optional

import redis

from .errors import InvalidResourceKind
from .registry import Resource, ResourceKind, ResourceRegistry
from .settings import ConsistencyMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaggingKeys:
    """Store keys touched by one (user, item, tag) association."""
    user_items: str
    item_users: str
    tag_users: str
    tag_items: str
    scoped_items: str
    user_tags: str
    item_tags: str
    global_tags: str
    item_tag_cache: str


class AssociationEngine:
    """
    Records and removes taggings.

    In BEST_EFFORT mode the scoped-set check and the JSON cache update are
    separate round trips from the MULTI/EXEC batch; two concurrent first
    taggings may both count, and concurrent cache writes may overwrite each
    other. OPTIMISTIC mode runs each call as one watched transaction.

    Usage:
        engine = AssociationEngine(redis_client, ResourceRegistry.default())
        engine.tag(user, item, tag)
        engine.untag(user, item, tag)
    """

    # Attempts before a conflicting optimistic transaction gives up
    MAX_WATCH_RETRIES = 10

    def __init__(
        self,
        client: redis.Redis,
        registry: ResourceRegistry,
        consistency: ConsistencyMode = ConsistencyMode.BEST_EFFORT,
    ):
        """
        Initialize the engine.

        Args:
            client: Redis client created with decode_responses=True
            registry: Resource registry for kinds and key namespaces
            consistency: Transaction coverage for tag/untag
        """
        self.client = client
        self.registry = registry
        self.consistency = ConsistencyMode(consistency)

    def tag(self, user: Resource, item: Resource, tag: Resource) -> bool:
        """
        Record that user tagged item with tag.

        Arguments may be passed in any order; they are matched up by kind.

        Args:
            user: User resource
            item: Item resource
            tag: Tag resource

        Returns:
            True if the user had not tagged this item with this tag before

        Raises:
            InvalidResourceKind: If the arguments are not one registered
                user, item and tag
        """
        user, item, tag = self._sort_by_kind(user, item, tag)
        keys = self.keys_for(user, item, tag)

        if self.consistency is ConsistencyMode.OPTIMISTIC:
            is_new = self._run_watched(
                lambda pipe: self._tag_watched(pipe, keys, user, item, tag),
                keys.scoped_items, keys.item_tag_cache,
            )
        else:
            is_new = self._tag_best_effort(keys, user, item, tag)

        logger.debug(
            f"Tagged item {item.identifier} with '{tag.identifier}' "
            f"for user {user.identifier} (new={is_new})"
        )
        return is_new

    def untag(self, user: Resource, item: Resource, tag: Resource) -> bool:
        """
        Remove the tagging of item with tag by user.

        Args:
            user: User resource
            item: Item resource
            tag: Tag resource

        Returns:
            True if the scoped tagging existed and was removed

        Raises:
            InvalidResourceKind: If the arguments are not one registered
                user, item and tag
        """
        user, item, tag = self._sort_by_kind(user, item, tag)
        keys = self.keys_for(user, item, tag)

        if self.consistency is ConsistencyMode.OPTIMISTIC:
            was_removed = self._run_watched(
                lambda pipe: self._untag_watched(pipe, keys, user, item, tag),
                keys.scoped_items, keys.item_tag_cache,
                keys.user_tags, keys.item_tags, keys.global_tags,
            )
        else:
            was_removed = self._untag_best_effort(keys, user, item, tag)

        logger.debug(
            f"Untagged item {item.identifier} from '{tag.identifier}' "
            f"for user {user.identifier} (removed={was_removed})"
        )
        return was_removed

    def keys_for(self, user: Resource, item: Resource, tag: Resource) -> TaggingKeys:
        """Build every store key involved in a (user, item, tag) association."""
        key = self.registry.key
        return TaggingKeys(
            user_items=key(user, ResourceKind.ITEM),
            item_users=key(item, ResourceKind.USER),
            tag_users=key(tag, ResourceKind.USER),
            tag_items=key(tag, ResourceKind.ITEM),
            scoped_items=key(user, ResourceKind.TAG, tag.identifier, ResourceKind.ITEM),
            user_tags=key(user, ResourceKind.TAG),
            item_tags=key(item, ResourceKind.TAG),
            global_tags=key(ResourceKind.TAG, ResourceKind.TAG),
            item_tag_cache=key(user, ResourceKind.ITEM, ResourceKind.TAG),
        )

    # -- best effort ---------------------------------------------------------

    def _tag_best_effort(
        self, keys: TaggingKeys, user: Resource, item: Resource, tag: Resource
    ) -> bool:
        # SADD reports whether membership changed, so this is the "first time" check
        is_new = bool(self.client.sadd(keys.scoped_items, item.identifier))

        with self.client.pipeline(transaction=True) as pipe:
            self._queue_membership(pipe.sadd, keys, user, item)
            if is_new:
                pipe.zincrby(keys.user_tags, 1, tag.identifier)
                pipe.zincrby(keys.item_tags, 1, tag.identifier)
            pipe.zincrby(keys.global_tags, 1, tag.identifier)
            pipe.execute()

        tags = self._load_tags(self.client.hget(keys.item_tag_cache, item.identifier))
        if tag.identifier not in tags:
            tags.append(tag.identifier)
        self._store_tags(self.client, keys.item_tag_cache, item.identifier, tags)
        return is_new

    def _untag_best_effort(
        self, keys: TaggingKeys, user: Resource, item: Resource, tag: Resource
    ) -> bool:
        was_removed = bool(self.client.srem(keys.scoped_items, item.identifier))

        with self.client.pipeline(transaction=True) as pipe:
            self._queue_membership(pipe.srem, keys, user, item)
            pipe.execute()

        if was_removed:
            self._decrement(keys.user_tags, tag.identifier)
            self._decrement(keys.item_tags, tag.identifier)
        self._decrement(keys.global_tags, tag.identifier)

        tags = self._load_tags(self.client.hget(keys.item_tag_cache, item.identifier))
        if tag.identifier in tags:
            tags.remove(tag.identifier)
        self._store_tags(self.client, keys.item_tag_cache, item.identifier, tags)
        return was_removed

    def _decrement(self, key: str, member: str) -> None:
        """Decrement a popularity score, dropping the member once it reaches zero."""
        if float(self.client.zincrby(key, -1, member)) <= 0:
            self.client.zrem(key, member)

    # -- optimistic ----------------------------------------------------------

    def _run_watched(self, apply, *watch_keys: str):
        """
        Run apply(pipe) inside WATCH/MULTI/EXEC, retrying on conflicts.

        apply reads through the pipeline while it is still in immediate
        mode, calls pipe.multi() and queues its writes.

        Raises:
            redis.WatchError: If every attempt conflicted
        """
        with self.client.pipeline() as pipe:
            for attempt in range(1, self.MAX_WATCH_RETRIES + 1):
                try:
                    pipe.watch(*watch_keys)
                    result = apply(pipe)
                    pipe.execute()
                    return result
                except redis.WatchError:
                    logger.warning(
                        f"Tagging transaction conflicted on {watch_keys[0]} "
                        f"(attempt {attempt}/{self.MAX_WATCH_RETRIES})"
                    )
                    if attempt == self.MAX_WATCH_RETRIES:
                        raise
                finally:
                    pipe.reset()

    def _tag_watched(
        self, pipe, keys: TaggingKeys, user: Resource, item: Resource, tag: Resource
    ) -> bool:
        is_new = not pipe.sismember(keys.scoped_items, item.identifier)
        tags = self._load_tags(pipe.hget(keys.item_tag_cache, item.identifier))

        pipe.multi()
        pipe.sadd(keys.scoped_items, item.identifier)
        self._queue_membership(pipe.sadd, keys, user, item)
        if is_new:
            pipe.zincrby(keys.user_tags, 1, tag.identifier)
            pipe.zincrby(keys.item_tags, 1, tag.identifier)
        pipe.zincrby(keys.global_tags, 1, tag.identifier)

        if tag.identifier not in tags:
            tags.append(tag.identifier)
        self._store_tags(pipe, keys.item_tag_cache, item.identifier, tags)
        return is_new

    def _untag_watched(
        self, pipe, keys: TaggingKeys, user: Resource, item: Resource, tag: Resource
    ) -> bool:
        was_member = bool(pipe.sismember(keys.scoped_items, item.identifier))
        user_score = pipe.zscore(keys.user_tags, tag.identifier)
        item_score = pipe.zscore(keys.item_tags, tag.identifier)
        global_score = pipe.zscore(keys.global_tags, tag.identifier)
        tags = self._load_tags(pipe.hget(keys.item_tag_cache, item.identifier))

        pipe.multi()
        pipe.srem(keys.scoped_items, item.identifier)
        self._queue_membership(pipe.srem, keys, user, item)
        if was_member:
            self._queue_decrement(pipe, keys.user_tags, tag.identifier, user_score)
            self._queue_decrement(pipe, keys.item_tags, tag.identifier, item_score)
        self._queue_decrement(pipe, keys.global_tags, tag.identifier, global_score)

        if tag.identifier in tags:
            tags.remove(tag.identifier)
        self._store_tags(pipe, keys.item_tag_cache, item.identifier, tags)
        return was_member

    @staticmethod
    def _queue_decrement(pipe, key: str, member: str, score: Optional[float]) -> None:
        if score is None or float(score) - 1 <= 0:
            pipe.zrem(key, member)
        else:
            pipe.zincrby(key, -1, member)

    # -- shared --------------------------------------------------------------

    @staticmethod
    def _queue_membership(command, keys: TaggingKeys, user: Resource, item: Resource) -> None:
        """Apply SADD or SREM to the four plain membership sets."""
        command(keys.user_items, item.identifier)
        command(keys.item_users, user.identifier)
        command(keys.tag_users, user.identifier)
        command(keys.tag_items, item.identifier)

    @staticmethod
    def _load_tags(raw: Optional[str]) -> list[str]:
        return json.loads(raw) if raw else []

    @staticmethod
    def _store_tags(conn, key: str, field: str, tags: list[str]) -> None:
        if tags:
            conn.hset(key, field, json.dumps(tags))
        else:
            conn.hdel(key, field)

    def _sort_by_kind(self, *resources: Resource) -> tuple[Resource, Resource, Resource]:
        """Match arguments to (user, item, tag) by their kind."""
        data = {}
        for resource in resources:
            if not isinstance(resource, Resource):
                raise InvalidResourceKind("Expected a resource", value=resource)
            if not self.registry.is_registered(resource.kind):
                raise InvalidResourceKind(
                    "Resource kind is not registered", kind=resource.kind.value
                )
            data[resource.kind] = resource

        missing = [kind.value for kind in ResourceKind if kind not in data]
        if missing:
            raise InvalidResourceKind(
                "A tagging needs one user, one item and one tag", missing=missing
            )
        return data[ResourceKind.USER], data[ResourceKind.ITEM], data[ResourceKind.TAG]
