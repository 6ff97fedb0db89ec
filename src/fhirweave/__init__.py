"""
fhirweave - declarative HL7 v2 to FHIR-shaped resource conversion

fhirweave interprets YAML mapping specifications against HL7 v2 messages and
assembles the resulting resources into a linked bundle.
"""

from importlib.metadata import version

from fhirweave.converter import ConversionResult, Converter
from fhirweave.options import ConverterOptions
from fhirweave.source.message import Message
from fhirweave.structure.registry import SpecificationSet

__version__ = version("fhirweave")

__all__ = [
    "__version__",
    "Converter",
    "ConversionResult",
    "ConverterOptions",
    "Message",
    "SpecificationSet",
]
