"""Prompt construction and text generation."""

from .backends import EchoTextGenerator, OpenAITextGenerator, TextGenerator, build_text_generator
from .prompts import INDUSTRY_GUIDELINES, PromptBuilder, validate_guidelines
from .service import ResponseGenerator

__all__ = [
    "EchoTextGenerator",
    "INDUSTRY_GUIDELINES",
    "OpenAITextGenerator",
    "PromptBuilder",
    "ResponseGenerator",
    "TextGenerator",
    "build_text_generator",
    "validate_guidelines",
]
