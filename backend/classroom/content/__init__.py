"""Lesson content generation (tutor guides, practice problems, counterparts)."""

from .gateway import ContentGenerator, LLMContentGenerator, get_content_generator

__all__ = ["ContentGenerator", "LLMContentGenerator", "get_content_generator"]
