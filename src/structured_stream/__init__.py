"""structured-stream: typed, schema-conforming LLM output, whole or streamed."""

from .accumulator import Snapshot, StructuredAccumulator, TextAccumulator
from .content import GeneratedContent
from .converter import convert, schema_from_document
from .decoder import decode
from .errors import ConstructionError, DecodeError, StructuredStreamError
from .generable import GenerableType, generable_type, generation_schema_for
from .placeholder import synthesize, synthesize_schema
from .schema import GenerationSchema
from .session import LanguageModelSession, Response, ResponseStream
from .tracing import setup_tracing

__all__ = [
    "ConstructionError",
    "DecodeError",
    "GeneratedContent",
    "GenerableType",
    "GenerationSchema",
    "LanguageModelSession",
    "Response",
    "ResponseStream",
    "Snapshot",
    "StructuredAccumulator",
    "StructuredStreamError",
    "TextAccumulator",
    "convert",
    "decode",
    "generable_type",
    "generation_schema_for",
    "schema_from_document",
    "setup_tracing",
    "synthesize",
    "synthesize_schema",
]
