"""Service layer orchestrations for the answer engine."""

from .context import ContextAssembler, ContextConfig
from .generation import GenerationBackend, GenerationConfig, OpenAIGenerator, PromptBuilder, TemplateGenerator
from .query import OrchestratorConfig, QueryOrchestrator

__all__ = [
    "ContextAssembler",
    "ContextConfig",
    "GenerationBackend",
    "GenerationConfig",
    "OpenAIGenerator",
    "OrchestratorConfig",
    "PromptBuilder",
    "QueryOrchestrator",
    "TemplateGenerator",
]
