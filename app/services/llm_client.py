"""OpenRouter LLM client with retries."""

import hashlib
import json
import logging
from typing import Dict, List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, stop_after_delay, wait_exponential

from app.config import settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = [429, 500, 503]


class LLMClient:
    """Client for the OpenRouter chat completions API."""

    def __init__(self, api_key: Optional[str] = None):
        """Initialize the LLM client."""
        self.api_key = api_key or settings.OPENROUTER_API_KEY
        self.base_url = settings.OPENROUTER_BASE_URL
        self.site_url = settings.SITE_URL
        self.site_name = settings.SITE_NAME

    def _hash_text(self, text: str) -> str:
        """Hash text using SHA256."""
        return hashlib.sha256(text.encode()).hexdigest()

    def _build_headers(self) -> Dict[str, str]:
        """Build HTTP headers for OpenRouter."""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.site_url:
            headers["HTTP-Referer"] = self.site_url
        if self.site_name:
            headers["X-Title"] = self.site_name
        return headers

    @retry(
        stop=(
            stop_after_attempt(max(1, settings.MODEL_CALL_MAX_ATTEMPTS))
            | stop_after_delay(settings.MODEL_CALL_TIMEOUT)
        ),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.TransportError)),
        reraise=True,
    )
    def chat_completion(
        self,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float = 0.0,
        max_tokens: int = 4096,
        json_mode: bool = False,
        timeout: float = 120.0,
    ) -> str:
        """
        Call OpenRouter chat completions API.

        Args:
            model: Provider model identifier
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature
            max_tokens: Maximum tokens in response
            json_mode: Whether to request JSON output
            timeout: HTTP timeout in seconds

        Returns:
            Response content as string

        Raises:
            ValueError: If no API key is configured
            httpx.HTTPError: On API errors after retries
        """
        if not self.api_key:
            raise ValueError("OpenRouter API key is missing.")

        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        request_hash = self._hash_text(json.dumps(payload, sort_keys=True))
        logger.info(f"LLM request to {model}, hash: {request_hash[:16]}")

        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        with httpx.Client(timeout=timeout) as client:
            response = client.post(
                f"{self.base_url}/chat/completions",
                headers=self._build_headers(),
                json=payload,
            )

            if response.status_code in RETRYABLE_STATUS_CODES:
                logger.warning(f"Retryable error {response.status_code} from OpenRouter")
                raise httpx.HTTPStatusError(
                    f"Retryable error: {response.status_code}",
                    request=response.request,
                    response=response,
                )

            response.raise_for_status()

            result = response.json()
            content = result["choices"][0]["message"]["content"] or ""

            response_hash = self._hash_text(content)
            logger.info(f"LLM response hash: {response_hash[:16]}")

            return content
