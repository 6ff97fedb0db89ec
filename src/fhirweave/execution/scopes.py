"""
Variable scopes for mapping specification evaluation.

A Scope is an immutable chain of binding frames. Evaluating a node never
changes the scope it was handed; it layers a new frame on top instead, so a
parent scope can be shared by sibling branches and captured by deferred
evaluations without copying.
"""

from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any

from attrs import field, frozen

from fhirweave.source.message import Segment

BASE_VALUE = "BASE_VALUE"


def _freeze(bindings: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(bindings or {}))


@frozen(eq=False)
class Scope:
    """
    One frame of variable bindings plus a link to the enclosing frame.

    Params:
        bindings: Names bound by this frame
        parent: Enclosing frame, None for the root
        anchor: Segment occurrence this frame is driven by, if any
    """

    bindings: Mapping[str, Any] = field(factory=dict, converter=_freeze)
    parent: "Scope | None" = None
    anchor: Segment | None = None

    @classmethod
    def root(cls, constants: Mapping[str, Any] | None = None) -> "Scope":
        return cls(bindings=constants or {})

    def lookup(self, name: str) -> Any:
        """
        Find the innermost binding of a name.

        Params:
            name: Variable name without the leading `$`

        Returns:
            Bound value, or None when no frame binds the name
        """
        for frame in self.frames():
            if name in frame.bindings:
                return frame.bindings[name]
        return None

    def is_bound(self, name: str) -> bool:
        return any(name in frame.bindings for frame in self.frames())

    def child(
        self, bindings: Mapping[str, Any] | None = None, anchor: Segment | None = None
    ) -> "Scope":
        """Layer a new frame on top of this one."""
        return Scope(bindings=bindings, parent=self, anchor=anchor)

    def bind(self, name: str, value: Any) -> "Scope":
        return self.child({name: value})

    def with_base(self, value: Any) -> "Scope":
        """
        Layer a frame for one repetition of a driving source.

        Binds `$BASE_VALUE`; when the value is a segment occurrence it also
        becomes the anchor, so paths naming that segment resolve against this
        occurrence only.
        """
        anchor = value if isinstance(value, Segment) else None
        return self.child({BASE_VALUE: value}, anchor=anchor)

    @property
    def base_value(self) -> Any:
        return self.lookup(BASE_VALUE)

    def anchors(self) -> dict[str, Segment]:
        """Anchored segment occurrences by segment name; inner frames win."""
        found: dict[str, Segment] = {}
        for frame in self.frames():
            if frame.anchor is not None and frame.anchor.name not in found:
                found[frame.anchor.name] = frame.anchor
        return found

    def frames(self) -> Iterator["Scope"]:
        frame: Scope | None = self
        while frame is not None:
            yield frame
            frame = frame.parent

    def names(self) -> set[str]:
        return {name for frame in self.frames() for name in frame.bindings}

    def __repr__(self) -> str:
        return f"Scope(bindings={dict(self.bindings)!r}, depth={sum(1 for _ in self.frames())})"
