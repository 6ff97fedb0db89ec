"""
Source document adapters: the ER7 message model and its path resolver.
"""

from fhirweave.source.message import Composite, Encoding, Message, Segment
from fhirweave.source.resolver import PathResolver

__all__ = [
    "Composite",
    "Encoding",
    "Message",
    "PathResolver",
    "Segment",
]
