"""Service layer exposing document question answering."""
from .answer import AnswerResult, AnswerService, Reference, build_references, map_chunk_to_reference

__all__ = ["AnswerResult", "AnswerService", "Reference", "build_references", "map_chunk_to_reference"]
