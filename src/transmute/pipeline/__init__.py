"""Pipeline components: handler resolution, transformers, admission, orchestration."""

from .orchestrator import PipelineStage, TransformPipeline
from .rate_limiter import RateLimiter
from .registry import (
    BoundClosure,
    HandlerDescriptor,
    HandlerRegistry,
    Invocable,
    LocalCallable,
    ProviderClient,
)
from .transformer import Transformer

__all__ = [
    "BoundClosure",
    "HandlerDescriptor",
    "HandlerRegistry",
    "Invocable",
    "LocalCallable",
    "PipelineStage",
    "ProviderClient",
    "RateLimiter",
    "TransformPipeline",
    "Transformer",
]
