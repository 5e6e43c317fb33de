"""Template compilation, page rendering, and generation orchestration."""

from .markup import MarkupHelpers, build_environment, template_compiler
from .models import (
    CompletionBarrier,
    GenerationRequest,
    RequestStatus,
    Trigger,
    TriggerReason,
    WildcardError,
)
from .page_generator import GenerationOrchestrator
from .renderer import PageRenderer, RenderError, UnwrappedBodyError

__all__ = [
    "CompletionBarrier",
    "GenerationOrchestrator",
    "GenerationRequest",
    "MarkupHelpers",
    "PageRenderer",
    "RenderError",
    "RequestStatus",
    "Trigger",
    "TriggerReason",
    "UnwrappedBodyError",
    "WildcardError",
    "build_environment",
    "template_compiler",
]
