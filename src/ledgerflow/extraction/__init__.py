"""
Message extraction via an external language model.

The model returns a fixed ParsedExpense record; prompt sections built from
the user's rules steer categorization and transfer recognition.
"""

from .client import ExtractionError, GeminiExtractor, extraction_cache_key, parse_json_response
from .prompts import (
    PROMPT_VERSION,
    ExtractionPrompt,
    build_account_hint,
    build_dynamic_prompts,
    build_rules_prompt_section,
    build_transfer_prompt_section,
)

__all__ = [
    "PROMPT_VERSION",
    "ExtractionError",
    "ExtractionPrompt",
    "GeminiExtractor",
    "build_account_hint",
    "build_dynamic_prompts",
    "build_rules_prompt_section",
    "build_transfer_prompt_section",
    "extraction_cache_key",
    "parse_json_response",
]
