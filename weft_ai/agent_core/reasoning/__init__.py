from .base import BackendFactory, ReasoningBackend, ReasoningResponse

__all__ = ["BackendFactory", "ReasoningBackend", "ReasoningResponse"]
