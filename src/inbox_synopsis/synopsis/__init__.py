"""Synopsis generation: prompt, LLM call, response parsing."""

from inbox_synopsis.synopsis.generator import LLMService, SynopsisGenerator
from inbox_synopsis.synopsis.parser import parse_synopsis_response
from inbox_synopsis.synopsis.quota import classify_llm_error

__all__ = ["LLMService", "SynopsisGenerator", "classify_llm_error", "parse_synopsis_response"]
