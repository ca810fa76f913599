from .provider import CompletionChunk, CompletionRequest, LanguageModelProvider
from .openai_provider import OpenAIChatCompletionsProvider

__all__ = ["CompletionChunk", "CompletionRequest", "LanguageModelProvider", "OpenAIChatCompletionsProvider"]
