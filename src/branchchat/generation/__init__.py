"""Generation backend access, error classification and orchestration."""

from branchchat.generation.backend import (
    BackendError,
    GenerationBackend,
    GenerationRequest,
    GenerationResponse,
)
from branchchat.generation.classifier import (
    ErrorAnalysis,
    ErrorCategory,
    analyze_error,
    classify,
    finish_reason_annotation,
)
from branchchat.generation.gemini import GeminiClient
from branchchat.generation.orchestrator import (
    ConfigurationError,
    GenerationOrchestrator,
    GenerationResult,
    NullUsageTracker,
    UsageTracker,
    resolve_api_key,
)

__all__ = [
    "BackendError",
    "ConfigurationError",
    "ErrorAnalysis",
    "ErrorCategory",
    "GeminiClient",
    "GenerationBackend",
    "GenerationOrchestrator",
    "GenerationRequest",
    "GenerationResponse",
    "GenerationResult",
    "NullUsageTracker",
    "UsageTracker",
    "analyze_error",
    "classify",
    "finish_reason_annotation",
    "resolve_api_key",
]
