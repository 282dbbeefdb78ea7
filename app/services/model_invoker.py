"""Model invocation: prompts and provider routing for recitation requests."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.config import settings
from app.errors import ItemDispatchFailure
from app.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a biblical scholar with perfect recall of the King James Version of the Bible. "
    "When asked to recite scripture, you provide the exact KJV text without any modifications, "
    "additions, or commentary. Always respond with valid JSON matching the requested schema."
)


@dataclass
class ModelSpec:
    """Detached description of a registered model."""

    model_id: int
    provider: str
    display_name: str
    model_name: Optional[str] = None
    api_config: Dict[str, Any] = field(default_factory=dict)
    output_steps: Optional[List[Dict[str, Any]]] = None  # Transform profile for responses


@dataclass
class CanonicalVerse:
    verse_id: int
    verse_number: int
    text_raw: str
    text_processed: str
    hash_processed: str


@dataclass
class Target:
    """A canonical unit handed to the model, with the text it will be scored against."""

    target_type: str  # 'chapter' or 'verse'
    target_id: int
    reference: str
    bible_id: int
    book_id: int
    chapter_id: int
    verses: List[CanonicalVerse]


def build_verse_prompt(reference: str) -> str:
    return f"""What is {reference} in the English King James Version?

Return STRICT structured output as JSON:
{{
  "book": "<book name>",
  "chapter": "<chapter number>",
  "verseNumber": "<verse number>",
  "verseText": "<exact KJV text without verse number>"
}}"""


def build_chapter_prompt(reference: str) -> str:
    return f"""What is {reference} in the English King James Version?

Return STRICT structured output as JSON with all verses in the chapter:
{{
  "book": "<book name>",
  "chapter": "<chapter number>",
  "verses": [
    {{ "verseNumber": "1", "verseText": "<exact KJV text for verse 1>" }},
    {{ "verseNumber": "2", "verseText": "<exact KJV text for verse 2>" }},
    ...continue for all verses in the chapter
  ]
}}"""


def build_prompt(target: Target) -> str:
    if target.target_type == "chapter":
        return build_chapter_prompt(target.reference)
    return build_verse_prompt(target.reference)


class MockProvider:
    """
    Deterministic provider driven by the model's api_config.

    Config keys (optionally nested under "mock"):
        mode: 'echo_raw' (default), 'echo_processed' or 'literal'
        literalResponse: text returned in 'literal' mode
        overrides: {targetId: raw response} returned verbatim
        failTargets: target ids that raise a dispatch failure
    """

    def _config(self, model: ModelSpec) -> Dict[str, Any]:
        config = model.api_config or {}
        if isinstance(config.get("mock"), dict):
            return config["mock"]
        return config

    def generate(self, model: ModelSpec, target: Target) -> str:
        config = self._config(model)

        if target.target_id in (config.get("failTargets") or []):
            raise ItemDispatchFailure(f"Mock provider failure for target {target.target_id}")

        overrides = config.get("overrides") or {}
        override = overrides.get(str(target.target_id))
        if override is not None:
            return override

        mode = config.get("mode", "echo_raw")

        def text_for(verse: CanonicalVerse) -> str:
            if mode == "echo_processed":
                return verse.text_processed
            if mode == "literal":
                return config.get("literalResponse", verse.text_raw)
            return verse.text_raw

        book, _, number = target.reference.rpartition(" ")
        if target.target_type == "verse":
            verse = target.verses[0]
            chapter, _, verse_number = number.partition(":")
            parsed = {
                "book": book,
                "chapter": chapter,
                "verseNumber": verse_number or str(verse.verse_number),
                "verseText": text_for(verse),
            }
        else:
            parsed = {
                "book": book,
                "chapter": number,
                "verses": [
                    {"verseNumber": str(v.verse_number), "verseText": text_for(v)}
                    for v in target.verses
                ],
            }
        return json.dumps(parsed)


def attempt_timeout() -> float:
    """HTTP timeout per attempt, so that all transport attempts fit in one model call."""
    return settings.MODEL_CALL_TIMEOUT / max(1, settings.MODEL_CALL_MAX_ATTEMPTS)


class OpenRouterProvider:
    """Recitation over the OpenRouter chat completions API."""

    def __init__(self, llm_client: Optional[LLMClient] = None):
        self.llm_client = llm_client

    def generate(self, model: ModelSpec, target: Target) -> str:
        config = model.api_config or {}
        client = self.llm_client or LLMClient(api_key=config.get("apiKey"))
        return client.chat_completion(
            model=model.model_name or config.get("model", ""),
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(target)},
            ],
            temperature=config.get("temperature", 0.0),
            max_tokens=config.get("maxTokens", 4096),
            json_mode=True,
            timeout=attempt_timeout(),
        )


class ModelInvoker:
    """Routes a recitation request to the model's provider."""

    def __init__(self, providers: Optional[Dict[str, Any]] = None):
        self.providers = providers or {
            "mock": MockProvider(),
            "openrouter": OpenRouterProvider(),
        }

    def invoke(self, model: ModelSpec, target: Target) -> str:
        """
        Ask the model to recite the target.

        Returns:
            Raw response text

        Raises:
            ItemDispatchFailure: If the provider is unknown or the response is empty
        """
        provider = self.providers.get((model.provider or "mock").lower())
        if provider is None:
            raise ItemDispatchFailure(f"Unsupported provider: {model.provider}")

        raw = provider.generate(model, target)
        if not raw or not raw.strip():
            raise ItemDispatchFailure("Empty response from provider.")
        return raw
