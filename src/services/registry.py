"""Resource kinds and the registry that maps them to storage settings.

A registry is built once at startup and never mutated afterwards:
``register()`` returns a new registry instead of changing the current one,
so a single instance can be shared by every request without locking.

Usage:
    registry = (
        ResourceRegistry()
        .register(ResourceKind.USER, "id")
        .register(ResourceKind.ITEM, "id")
        .register(ResourceKind.TAG, "name")
    )

    user = registry.resource(ResourceKind.USER, current_user)  # reads .id
    registry.key(user, ResourceKind.ITEM)                     # "USERS:1:ITEMS"
    registry.key(ResourceKind.TAG, ResourceKind.TAG)          # "TAGS:TAGS"
"""
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence, Union

from .errors import InvalidResourceKind, InvalidViaKind, UnregisteredKind
from .keys import build_key


class ResourceKind(str, Enum):
    """The three kinds of resources that take part in a tagging."""

    USER = "user"
    ITEM = "item"
    TAG = "tag"

    @classmethod
    def parse(cls, value: Any) -> "ResourceKind":
        """
        Resolve a kind from an enum member or a singular/plural name.

        Args:
            value: ResourceKind, or a name such as "user" or "users"

        Returns:
            Matching ResourceKind

        Raises:
            InvalidResourceKind: If value does not name a kind
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            name = value.strip().lower()
            if name.endswith("s"):
                name = name[:-1]
            for kind in cls:
                if kind.value == name:
                    return kind
        raise InvalidResourceKind("Invalid resource kind", kind=value)


DEFAULT_NAMESPACES = {
    ResourceKind.USER: "USERS",
    ResourceKind.ITEM: "ITEMS",
    ResourceKind.TAG: "TAGS",
}


@dataclass(frozen=True)
class Resource:
    """A single user, item or tag, identified by its kind-specific identifier."""
    kind: ResourceKind
    identifier: str


# A query reference: one resource, or the kind itself for kind-level scopes
Reference = Union[Resource, ResourceKind]
ReferenceArg = Union[Reference, Sequence[Reference], None]


@dataclass(frozen=True)
class KindSettings:
    """Identifier field and key namespace registered for a kind."""
    identifier: str
    namespace: str


class ResourceRegistry:
    """Immutable mapping from resource kind to its identifier field and namespace."""

    def __init__(self, entries: Optional[Mapping[ResourceKind, KindSettings]] = None):
        self._entries = MappingProxyType(dict(entries or {}))

    @classmethod
    def default(cls) -> "ResourceRegistry":
        """Registry with users and items identified by id, tags by name."""
        return (
            cls()
            .register(ResourceKind.USER, "id")
            .register(ResourceKind.ITEM, "id")
            .register(ResourceKind.TAG, "name")
        )

    def register(
        self,
        kind: Union[ResourceKind, str],
        identifier: str,
        namespace: Optional[str] = None,
    ) -> "ResourceRegistry":
        """
        Return a new registry with settings for one kind added or replaced.

        Args:
            kind: Resource kind (or its name)
            identifier: Attribute/key holding the resource identifier
            namespace: Key namespace (defaults to USERS, ITEMS or TAGS)

        Returns:
            New ResourceRegistry; this instance is left unchanged

        Raises:
            InvalidResourceKind: If kind is not user, item or tag
        """
        kind = ResourceKind.parse(kind)
        entries = dict(self._entries)
        entries[kind] = KindSettings(
            identifier=str(identifier),
            namespace=namespace or DEFAULT_NAMESPACES[kind],
        )
        return ResourceRegistry(entries)

    def lookup(
        self, kind: Union[ResourceKind, str], strict: bool = True
    ) -> Optional[KindSettings]:
        """
        Get the registered settings for a kind.

        Args:
            kind: Resource kind (or its name)
            strict: Raise when the kind is unregistered instead of returning None

        Returns:
            KindSettings, or None for an unregistered kind in non-strict mode

        Raises:
            UnregisteredKind: If strict and the kind was never registered
        """
        kind = ResourceKind.parse(kind)
        settings = self._entries.get(kind)
        if settings is None and strict:
            raise UnregisteredKind("Resource kind has not been registered", kind=kind.value)
        return settings

    def is_registered(self, kind: ResourceKind) -> bool:
        return kind in self._entries

    @property
    def kinds(self) -> list[ResourceKind]:
        return list(self._entries)

    def namespace(self, kind: ResourceKind) -> str:
        settings = self.lookup(kind, strict=False)
        return settings.namespace if settings else DEFAULT_NAMESPACES[kind]

    def resource(self, kind: Union[ResourceKind, str], obj: Any) -> Resource:
        """
        Resolve a model object, mapping or raw identifier into a Resource.

        Objects are read through the registered identifier field (attribute
        or mapping key); strings and integers are used as the identifier.

        Args:
            kind: Resource kind of obj
            obj: Model instance, dict, Resource or identifier value

        Returns:
            Resource with a string identifier

        Raises:
            InvalidResourceKind: If obj cannot be read as a resource of kind
            UnregisteredKind: If kind was never registered
        """
        kind = ResourceKind.parse(kind)
        settings = self.lookup(kind)

        if isinstance(obj, Resource):
            if obj.kind != kind:
                raise InvalidResourceKind(
                    "Resource has the wrong kind", expected=kind.value, actual=obj.kind.value
                )
            return obj

        if isinstance(obj, (str, int)) and not isinstance(obj, bool):
            value = obj
        elif isinstance(obj, Mapping):
            if settings.identifier not in obj:
                raise InvalidResourceKind(
                    "Mapping has no identifier field",
                    kind=kind.value, field=settings.identifier,
                )
            value = obj[settings.identifier]
        elif hasattr(obj, settings.identifier):
            value = getattr(obj, settings.identifier)
        else:
            raise InvalidResourceKind(
                "Object has no identifier field",
                kind=kind.value, field=settings.identifier, type=type(obj).__name__,
            )

        if value is None:
            raise InvalidResourceKind("Resource identifier is empty", kind=kind.value)
        return Resource(kind=kind, identifier=str(value))

    def key(self, target: Reference, *segments: Any) -> str:
        """
        Build the storage key for a resource or a kind.

        Segments that are ResourceKinds are written as that kind's namespace.

        Args:
            target: Resource (instance key) or ResourceKind (kind-level key)
            segments: Sub-scope segments, e.g. ResourceKind.ITEM

        Returns:
            Store key, e.g. "USERS:1:ITEMS" or "TAGS:TAGS"
        """
        if isinstance(target, Resource):
            head = [self.namespace(target.kind), target.identifier]
        elif isinstance(target, ResourceKind):
            head = [self.namespace(target)]
        else:
            raise InvalidViaKind("Cannot build a key for value", value=target)

        parts = [self.namespace(s) if isinstance(s, ResourceKind) else s for s in segments]
        return build_key(*head, *parts)

    def resolve_kind(self, reference: ReferenceArg) -> Optional[ResourceKind]:
        """
        Determine the kind of a scope/via reference.

        Args:
            reference: Resource, ResourceKind, a sequence of them, or None

        Returns:
            The shared kind, or None when the reference is absent or empty

        Raises:
            InvalidViaKind: If any element is not a registered resource or kind,
                or the elements are of different kinds
        """
        if reference is None:
            return None
        refs = list(reference) if isinstance(reference, (list, tuple)) else [reference]
        if not refs:
            return None

        kinds = set()
        for ref in refs:
            if isinstance(ref, Resource):
                kind = ref.kind
            elif isinstance(ref, ResourceKind):
                kind = ref
            else:
                raise InvalidViaKind("Invalid via type", value=ref)
            if not self.is_registered(kind):
                raise InvalidViaKind("Via kind is not registered", kind=kind.value)
            kinds.add(kind)

        if len(kinds) > 1:
            raise InvalidViaKind(
                "Via references mix resource kinds", kinds=sorted(k.value for k in kinds)
            )
        return kinds.pop()
