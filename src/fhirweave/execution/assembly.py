"""
Resource and bundle assembly.

ResourceInstance holds one output resource while its specification is
evaluated; BundleBuilder creates instances, hands out their identities,
indexes registered instances by kind and produces the finalized bundle.
"""

import copy
import logging
import re
import uuid
from collections import defaultdict
from typing import Any

from attrs import frozen

from fhirweave.core.types import AttributeMap, BundleEntry, is_empty

logger = logging.getLogger(__name__)

ATTRIBUTE_SUFFIX_PATTERN = re.compile(r"_\d+$")
RESERVED_ATTRIBUTES = frozenset({"resourceType", "id"})


def attribute_name(name: str) -> str:
    """Strip a trailing `_<digits>` rule suffix: ``identifier_2`` -> ``identifier``."""
    return ATTRIBUTE_SUFFIX_PATTERN.sub("", name)


def splice_attribute(target: AttributeMap, name: str, value: Any, as_list: bool = False) -> None:
    """
    Splice one produced value into an attribute map.

    Values are deep-copied so the target owns them outright. List attributes
    accumulate in production order; a scalar attribute keeps the first value
    it receives.

    Params:
        target: Attribute map of a resource or of a nested fragment
        name: Attribute name as declared, rule suffix allowed
        value: Produced value; empty values are ignored
        as_list: Whether the attribute is list-valued
    """
    if is_empty(value):
        return

    key = attribute_name(name)
    owned = copy.deepcopy(value)
    existing = target.get(key)

    if as_list or isinstance(existing, list):
        items = target.setdefault(key, [])
        if not isinstance(items, list):
            items = target[key] = [items]
        if isinstance(owned, list):
            items.extend(owned)
        else:
            items.append(owned)
        return

    if key in target:
        logger.debug(f"Attribute '{key}' already set, later value ignored")
        return
    target[key] = owned


class ResourceInstance:
    """
    One output resource under construction.

    The identity is fixed at creation; `attributes` fills up during the
    immediate pass and, for deferred attributes, during the deferred pass.
    """

    def __init__(self, kind: str, identity: str, ordinal: int):
        self.kind = kind
        self.identity = identity
        self.ordinal = ordinal
        self.attributes: AttributeMap = {}
        self.registered = False
        self.discarded = False

    @property
    def reference(self) -> str:
        return f"{self.kind}/{self.identity}"

    def splice(self, name: str, value: Any, as_list: bool = False) -> None:
        if attribute_name(name) in RESERVED_ATTRIBUTES:
            logger.debug(f"Ignoring value for reserved attribute '{name}' of {self.kind}")
            return
        splice_attribute(self.attributes, name, value, as_list)

    def to_dict(self) -> AttributeMap:
        """Plain attribute dict with `resourceType` and `id` first."""
        return {
            "resourceType": self.kind,
            "id": self.identity,
            **copy.deepcopy(self.attributes),
        }

    def to_fragment(self) -> dict:
        """A resource used as a value is a reference to it."""
        return {"reference": self.reference}

    def is_empty(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"ResourceInstance({self.reference!r}, attributes={list(self.attributes)})"


@frozen
class IdentityGenerator:
    """
    Deterministic identities: the same message always yields the same ids.

    Params:
        namespace: UUID namespace for uuid5
        fingerprint: Digest of the source message
    """

    namespace: uuid.UUID
    fingerprint: str

    def identity(self, kind: str, ordinal: int) -> str:
        return str(uuid.uuid5(self.namespace, f"{self.fingerprint}/{kind}/{ordinal}"))


class BundleBuilder:
    """
    Bundle under construction for one conversion run.

    Instances are created in evaluation order, become visible to lookups by
    kind once registered, and appear in the finalized bundle in creation
    order. Discarded instances never appear.
    """

    def __init__(self, identities: IdentityGenerator):
        self.identities = identities
        self._created: list[ResourceInstance] = []
        self._ordinals: dict[str, int] = defaultdict(int)
        self._index: dict[str, list[ResourceInstance]] = defaultdict(list)

    def create(self, kind: str) -> ResourceInstance:
        """
        Create a resource shell and assign its identity.

        Params:
            kind: Resource kind such as ``Condition``

        Returns:
            New, unregistered instance
        """
        self._ordinals[kind] += 1
        ordinal = self._ordinals[kind]
        instance = ResourceInstance(kind, self.identities.identity(kind, ordinal), ordinal)
        self._created.append(instance)
        return instance

    def register(self, instance: ResourceInstance) -> None:
        """Publish a completed instance to the per-kind index."""
        if instance.discarded:
            raise ValueError(f"Cannot register discarded instance {instance.reference}")
        if instance.registered:
            return
        instance.registered = True
        self._index[instance.kind].append(instance)

    def discard(self, instance: ResourceInstance) -> None:
        """Drop an instance; it is removed from the index and the bundle."""
        instance.discarded = True
        if instance.registered:
            self._index[instance.kind].remove(instance)
            instance.registered = False
        logger.debug(f"Discarded {instance.reference}")

    def instances_of(self, kind: str) -> list[ResourceInstance]:
        """Registered instances of a kind, in registration order."""
        return list(self._index.get(kind, ()))

    @property
    def kinds(self) -> list[str]:
        return [kind for kind, instances in self._index.items() if instances]

    @property
    def instances(self) -> list[ResourceInstance]:
        return [instance for instance in self._created if instance.registered]

    def finalized_bundle(self) -> list[BundleEntry]:
        """Registered instances as ``(kind, attributes)`` pairs in creation order."""
        return [(instance.kind, instance.to_dict()) for instance in self.instances]

    def as_bundle(self) -> dict:
        """The finalized bundle wrapped in a collection Bundle resource."""
        return {
            "resourceType": "Bundle",
            "type": "collection",
            "entry": [
                {"fullUrl": f"urn:uuid:{attributes['id']}", "resource": attributes}
                for _, attributes in self.finalized_bundle()
            ],
        }

    def __len__(self) -> int:
        return len(self.instances)
