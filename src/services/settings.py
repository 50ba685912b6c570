"""Startup configuration for the tagging service.

Settings are read once from the environment and frozen; the registry and
the service are built from them and passed along explicitly.

Environment variables:
    REDIS_URL - Redis connection URL (default: redis://localhost:6379/0)
    TAGGING_CONSISTENCY - "best_effort" (default) or "optimistic"
    TAGGING_USER_IDENTIFIER - identifier field for users (default: id)
    TAGGING_ITEM_IDENTIFIER - identifier field for items (default: id)
    TAGGING_TAG_IDENTIFIER - identifier field for tags (default: name)
    TAGGING_USER_NAMESPACE / TAGGING_ITEM_NAMESPACE / TAGGING_TAG_NAMESPACE
        - key namespaces (default: USERS / ITEMS / TAGS)
"""
import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from .registry import DEFAULT_NAMESPACES, ResourceKind, ResourceRegistry

DEFAULT_REDIS_URL = "redis://localhost:6379/0"

DEFAULT_IDENTIFIERS = {
    ResourceKind.USER: "id",
    ResourceKind.ITEM: "id",
    ResourceKind.TAG: "name",
}


class ConsistencyMode(str, Enum):
    """How much of a tag/untag call is covered by a single transaction.

    BEST_EFFORT: scoped-set check and JSON cache update run outside the
        MULTI/EXEC batch, so concurrent calls can double count or lose a
        cache update.
    OPTIMISTIC: the whole call is one WATCH/MULTI/EXEC transaction,
        retried when a watched key changes underneath it.
    """

    BEST_EFFORT = "best_effort"
    OPTIMISTIC = "optimistic"


@dataclass(frozen=True)
class TaggingSettings:
    """Immutable service configuration."""
    redis_url: str = DEFAULT_REDIS_URL
    consistency: ConsistencyMode = ConsistencyMode.BEST_EFFORT
    user_identifier: str = DEFAULT_IDENTIFIERS[ResourceKind.USER]
    item_identifier: str = DEFAULT_IDENTIFIERS[ResourceKind.ITEM]
    tag_identifier: str = DEFAULT_IDENTIFIERS[ResourceKind.TAG]
    user_namespace: str = DEFAULT_NAMESPACES[ResourceKind.USER]
    item_namespace: str = DEFAULT_NAMESPACES[ResourceKind.ITEM]
    tag_namespace: str = DEFAULT_NAMESPACES[ResourceKind.TAG]

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "TaggingSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            TaggingSettings

        Raises:
            ValueError: If TAGGING_CONSISTENCY is not a known mode
        """
        env = os.environ if environ is None else environ
        consistency = env.get("TAGGING_CONSISTENCY", ConsistencyMode.BEST_EFFORT.value)

        return cls(
            redis_url=env.get("REDIS_URL", DEFAULT_REDIS_URL),
            consistency=ConsistencyMode(consistency.strip().lower()),
            user_identifier=env.get("TAGGING_USER_IDENTIFIER", cls.user_identifier),
            item_identifier=env.get("TAGGING_ITEM_IDENTIFIER", cls.item_identifier),
            tag_identifier=env.get("TAGGING_TAG_IDENTIFIER", cls.tag_identifier),
            user_namespace=env.get("TAGGING_USER_NAMESPACE", cls.user_namespace),
            item_namespace=env.get("TAGGING_ITEM_NAMESPACE", cls.item_namespace),
            tag_namespace=env.get("TAGGING_TAG_NAMESPACE", cls.tag_namespace),
        )

    def build_registry(self) -> ResourceRegistry:
        """Create the resource registry described by these settings."""
        return (
            ResourceRegistry()
            .register(ResourceKind.USER, self.user_identifier, self.user_namespace)
            .register(ResourceKind.ITEM, self.item_identifier, self.item_namespace)
            .register(ResourceKind.TAG, self.tag_identifier, self.tag_namespace)
        )
