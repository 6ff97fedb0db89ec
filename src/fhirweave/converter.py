"""
Converter facade: one call from message text to a finished bundle.
"""

import logging

from fhirweave.exceptions import SourceDataError
from fhirweave.execution.assembly import BundleBuilder
from fhirweave.execution.context import ConversionContext
from fhirweave.execution.deferred import resolve_deferred_evaluations
from fhirweave.execution.evaluator import ExpressionEvaluator
from fhirweave.execution.scripting import ScriptBridge
from fhirweave.options import ConverterOptions
from fhirweave.source.message import Message
from fhirweave.structure.registry import SpecificationSet

logger = logging.getLogger(__name__)


class ConversionResult:
    """
    Outcome of one successful conversion run.

    Params:
        message_type: Message type that selected the template
        bundle: Finished bundle builder of the run
        deferred: Summary of the deferred pass
    """

    def __init__(self, message_type: str, bundle: BundleBuilder, deferred: dict):
        self.message_type = message_type
        self.bundle = bundle
        self.deferred = deferred

    def finalized_bundle(self) -> list[tuple[str, dict]]:
        return self.bundle.finalized_bundle()

    def as_bundle(self) -> dict:
        return self.bundle.as_bundle()

    def resources_of(self, kind: str) -> list[dict]:
        """Attribute dicts of every resource of a kind, in creation order."""
        return [attributes for entry_kind, attributes in self.finalized_bundle() if entry_kind == kind]

    def __len__(self) -> int:
        return len(self.bundle)


class Converter:
    """
    Converts HL7 v2 messages into resource bundles.

    A Converter is built once and reused; every call to `convert` is an
    independent run with its own context.

    Params:
        specifications: Specification set; defaults to the bundled mapping
            files, or to `options.spec_directory` when set
        bridge: Scripting bridge; defaults to one with the built-in functions
        options: Converter options
    """

    def __init__(
        self,
        specifications: SpecificationSet | None = None,
        bridge: ScriptBridge | None = None,
        options: ConverterOptions | None = None,
    ):
        self.options = options or ConverterOptions()
        if specifications is None:
            if self.options.spec_directory:
                specifications = SpecificationSet.from_directory(self.options.spec_directory)
            else:
                specifications = SpecificationSet.load_default()
        self.specifications = specifications
        self.bridge = bridge or ScriptBridge.with_builtins()

    def convert(self, message: str | Message, message_type: str | None = None) -> ConversionResult:
        """
        Convert one message.

        Resources are built in template order; a declaration whose segment is
        absent is skipped, a repeating declaration builds one resource per
        segment occurrence. The deferred pass runs after every declaration.

        Params:
            message: ER7 text or a parsed Message
            message_type: Template to use; defaults to the message's MSH-9

        Returns:
            ConversionResult holding the finished bundle

        Raises:
            SourceDataError: When the message is corrupt or its type unknown
            SpecificationError: When a mapping file is broken
        """
        if isinstance(message, str):
            message = Message.parse(message)

        message_type = message_type or message.message_type or self.options.default_message_type
        if not message_type:
            raise SourceDataError("message type is missing from MSH-9")
        template = self.specifications.load_template(message_type)

        context = ConversionContext(message, self.specifications, self.bridge, self.options)
        evaluator = ExpressionEvaluator(context)
        root = context.root_scope()
        logger.info(f"Converting {message_type} message {message.control_id or ''}".rstrip())

        for declaration in template.resources:
            segments = message.segments_named(declaration.segment)
            if not segments:
                logger.debug(
                    f"Skipping {declaration.resource_name}: no {declaration.segment} segment"
                )
                continue

            specification = self.specifications.load_specification(
                declaration.specification_name
            )
            for segment in segments if declaration.repeats else segments[:1]:
                evaluator.build_resource(
                    specification, root.with_base(segment), kind=declaration.resource_name
                )

        deferred = resolve_deferred_evaluations(context, evaluator)
        logger.info(
            f"Converted {message_type} message into {len(context.bundle)} resources"
        )
        return ConversionResult(message_type, context.bundle, deferred)
