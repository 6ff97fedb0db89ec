"""
Converter configuration.
"""

import uuid
from typing import Any

from attrs import field, frozen

# Namespace for deterministic resource identities
DEFAULT_ID_NAMESPACE = uuid.UUID("6f2d1c3e-5b8a-4c7e-9d0f-1a2b3c4d5e6f")


def _to_uuid(value: Any) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


@frozen
class ConverterOptions:
    """
    Options of a Converter.

    Params:
        zone_id: Time zone id exposed to mapping files as ``$ZONEID``
        id_namespace: uuid5 namespace for resource identities
        spec_directory: Directory replacing the bundled mapping files
        default_message_type: Message type used when MSH-9 is empty
        constants: Extra constants visible to every expression
    """

    zone_id: str | None = None
    id_namespace: uuid.UUID = field(default=DEFAULT_ID_NAMESPACE, converter=_to_uuid)
    spec_directory: str | None = None
    default_message_type: str | None = None
    extra_constants: dict[str, Any] = field(factory=dict, alias="constants")

    def constants(self) -> dict[str, Any]:
        """Values bound in the root scope of every conversion run."""
        values = dict(self.extra_constants)
        if self.zone_id:
            values["ZONEID"] = self.zone_id
        return values
