"""
Specification set: loading and lookup of mapping files.

Mapping files are organized by directory, and a specification is addressed
as ``dir/Name`` (``resource/Encounter``, ``datatype/CodeableConcept``). The
``message`` directory is special: it holds message templates keyed by
message type. A SpecificationSet is built once and then only read.
"""

import logging
from collections.abc import Iterable, Mapping
from importlib.resources import files
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from inflection import camelize
from pydantic import ValidationError

from fhirweave.exceptions import ErrorContext, SpecificationError
from fhirweave.structure.specification import (
    MessageTemplate,
    Specification,
    is_specification_reference,
    summarize_validation_error,
)

logger = logging.getLogger(__name__)

TEMPLATE_DIRECTORY = "message"
DEFAULT_DIRECTORY = "resource"
YAML_SUFFIXES = (".yml", ".yaml")


def normalize_specification_name(name: str) -> str:
    """
    Normalize a specification name.

    Params:
        name: ``dir/Name`` or a bare resource kind in any casing

    Returns:
        ``dir/Name`` form; bare kinds resolve under ``resource/``

    Examples:
        "resource/Encounter" -> "resource/Encounter"
        "condition" -> "resource/Condition"
        "medication_request" -> "resource/MedicationRequest"
    """
    text = name.strip()
    for suffix in YAML_SUFFIXES:
        if text.endswith(suffix):
            text = text[: -len(suffix)]
    if "/" in text:
        return text
    return f"{DEFAULT_DIRECTORY}/{camelize(text)}"


def _load_yaml(text: str, name: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SpecificationError(
            f"Mapping file is not valid YAML: {e}", ErrorContext(specification=name)
        ) from e


class SpecificationSet:
    """
    Immutable collection of parsed specifications and message templates.

    Params:
        specifications: Specifications keyed by ``dir/Name``
        templates: Message templates keyed by message type
    """

    def __init__(
        self,
        specifications: Mapping[str, Specification],
        templates: Mapping[str, MessageTemplate] | None = None,
    ):
        self._specifications = dict(specifications)
        self._templates = dict(templates or {})

    @classmethod
    def from_mapping(
        cls,
        specifications: Mapping[str, Mapping | str],
        templates: Mapping[str, Mapping | str] | None = None,
    ) -> "SpecificationSet":
        """
        Build a set from in-memory mapping documents.

        Params:
            specifications: Name to YAML text or already-parsed mapping
            templates: Message type to YAML text or parsed template mapping

        Returns:
            SpecificationSet

        Raises:
            SpecificationError: When a document is not valid YAML or does not
                describe a valid specification
        """
        parsed = {}
        for raw_name, document in specifications.items():
            name = normalize_specification_name(raw_name)
            parsed[name] = _build_specification(name, document)

        parsed_templates = {}
        for message_type, document in (templates or {}).items():
            parsed_templates[message_type] = _build_template(message_type, document)

        return cls(parsed, parsed_templates)

    @classmethod
    def from_directory(cls, root: "str | Path | Traversable") -> "SpecificationSet":
        """
        Load every mapping file below a directory.

        Files directly below ``<root>/message`` become templates; every other
        ``<root>/<dir>/<Name>.yml`` becomes specification ``dir/Name``.

        Params:
            root: Directory path or importlib resources Traversable

        Returns:
            SpecificationSet
        """
        base = Path(root) if isinstance(root, str) else root
        if not base.is_dir():
            raise SpecificationError(f"Specification directory not found: {root}")

        specifications: dict[str, Any] = {}
        templates: dict[str, Any] = {}
        for directory in sorted(_subdirectories(base), key=lambda entry: entry.name):
            for entry in sorted(_yaml_files(directory), key=lambda item: item.name):
                stem = entry.name.rsplit(".", 1)[0]
                text = entry.read_text(encoding="utf-8")
                if directory.name == TEMPLATE_DIRECTORY:
                    templates[stem] = text
                else:
                    specifications[f"{directory.name}/{stem}"] = text

        logger.debug(
            f"Loaded {len(specifications)} specifications and {len(templates)} templates from {root}"
        )
        return cls.from_mapping(specifications, templates)

    @classmethod
    def load_default(cls) -> "SpecificationSet":
        """Load the mapping files bundled with the package."""
        return cls.from_directory(files("fhirweave") / "resources" / "hl7")

    def load_specification(self, name: str) -> Specification:
        """
        Look up a specification by name.

        Params:
            name: ``dir/Name`` or bare resource kind

        Returns:
            Specification

        Raises:
            SpecificationError: If no specification with that name was loaded
        """
        normalized = normalize_specification_name(name)
        try:
            return self._specifications[normalized]
        except KeyError:
            raise SpecificationError(
                f"Undeclared specification '{normalized}'",
                ErrorContext(specification=normalized),
            ) from None

    def load_template(self, message_type: str) -> MessageTemplate:
        """
        Look up the template for a message type such as ``ADT_A01``.

        Raises:
            SpecificationError: If no template exists for the message type
        """
        try:
            return self._templates[message_type]
        except KeyError:
            raise SpecificationError(
                f"No message template for message type '{message_type}'",
                ErrorContext(specification=f"{TEMPLATE_DIRECTORY}/{message_type}"),
            ) from None

    def has_specification(self, name: str) -> bool:
        return normalize_specification_name(name) in self._specifications

    @property
    def specification_names(self) -> list[str]:
        return list(self._specifications)

    @property
    def message_types(self) -> list[str]:
        return list(self._templates)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has_specification(name)

    def __len__(self) -> int:
        return len(self._specifications)


def _build_specification(name: str, document: Mapping | str) -> Specification:
    if not is_specification_reference(name):
        raise SpecificationError(
            f"Specification name must look like 'dir/Name', got '{name}'",
            ErrorContext(specification=name),
        )
    mapping = _load_yaml(document, name) if isinstance(document, str) else document
    if mapping is None:
        mapping = {}
    if not isinstance(mapping, Mapping):
        raise SpecificationError(
            "Mapping file must contain a mapping of attributes",
            ErrorContext(specification=name),
        )
    return Specification.from_mapping(name, dict(mapping))


def _build_template(message_type: str, document: Mapping | str) -> MessageTemplate:
    name = f"{TEMPLATE_DIRECTORY}/{message_type}"
    mapping = _load_yaml(document, name) if isinstance(document, str) else document
    if not isinstance(mapping, Mapping):
        raise SpecificationError(
            "Message template must contain a mapping", ErrorContext(specification=name)
        )
    try:
        return MessageTemplate.model_validate({"messageType": message_type, **mapping})
    except ValidationError as e:
        raise SpecificationError(
            f"Invalid message template: {summarize_validation_error(e)}", ErrorContext(specification=name)
        ) from e


def _subdirectories(base: "Path | Traversable") -> Iterable["Path | Traversable"]:
    return [entry for entry in base.iterdir() if entry.is_dir()]


def _yaml_files(directory: "Path | Traversable") -> Iterable["Path | Traversable"]:
    return [
        entry
        for entry in directory.iterdir()
        if entry.is_file() and entry.name.endswith(YAML_SUFFIXES)
    ]
