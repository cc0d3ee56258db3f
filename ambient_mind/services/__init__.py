from .evaluator import LLMEvaluator
from .openrouter_client import OpenRouterClient

__all__ = ["LLMEvaluator", "OpenRouterClient"]
