"""LLM integrations for generative pipeline stages."""

from .generator import ChatClient, ContentGenerator, GeneratedText
from .openai_client import OpenAIChatClient, OpenAISpeechClient
from .prompts import AssistantProfile, PromptLibrary, script_word_targets

__all__ = [
    "AssistantProfile",
    "ChatClient",
    "ContentGenerator",
    "GeneratedText",
    "OpenAIChatClient",
    "OpenAISpeechClient",
    "PromptLibrary",
    "script_word_targets",
]
