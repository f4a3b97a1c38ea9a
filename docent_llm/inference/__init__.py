"""Inference module: engine boundary and model ownership."""

from .backend import InferenceBackend
from .model_handle import ModelHandle, ModelManager

__all__ = [
    "InferenceBackend",
    "ModelHandle",
    "ModelManager",
]
