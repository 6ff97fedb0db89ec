"""
Per-run conversion context.
"""

from collections.abc import Callable
from typing import Any

from fhirweave.execution.assembly import BundleBuilder, IdentityGenerator
from fhirweave.execution.deferred import DeferredQueue
from fhirweave.execution.scopes import Scope
from fhirweave.execution.scripting import ScriptBridge
from fhirweave.options import ConverterOptions
from fhirweave.source.message import Message
from fhirweave.source.resolver import PathResolver
from fhirweave.structure.registry import SpecificationSet


class ConversionContext:
    """
    Everything one conversion run owns.

    The message, specification set and bridge are shared and read-only; the
    bundle and the deferred queue belong to this run alone.
    """

    def __init__(
        self,
        message: Message,
        specifications: SpecificationSet,
        bridge: ScriptBridge,
        options: ConverterOptions | None = None,
    ):
        self.message = message
        self.specifications = specifications
        self.bridge = bridge
        self.options = options or ConverterOptions()
        self.resolver = PathResolver(message)
        self.bundle = BundleBuilder(
            IdentityGenerator(self.options.id_namespace, message.fingerprint)
        )
        self.deferred = DeferredQueue()

    def root_scope(self) -> Scope:
        return Scope.root(self.options.constants())

    def lookup(self, scope: Scope, name: str) -> Any:
        """
        Resolve a variable name.

        Scope bindings win; an unbound name that is a resource kind resolves
        to the registered instances of that kind.

        Returns:
            Bound value, list of instances, or None
        """
        if scope.is_bound(name):
            return scope.lookup(name)
        instances = self.bundle.instances_of(name)
        return instances or None

    def lookup_in(self, scope: Scope) -> Callable[[str], Any]:
        return lambda name: self.lookup(scope, name)
