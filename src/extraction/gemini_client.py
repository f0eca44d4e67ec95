"""Gemini client wrapper using the google-genai SDK.

Implements the ActionabilityClassifier, SignalInterpreter and PostDrafter
capabilities. Uses response_mime_type="application/json" with a
response_schema so Gemini returns structured JSON, retries API errors 3 times
with exponential backoff and bounds every call with a timeout.
"""

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.common.config import GeminiConfig
from src.extraction.capabilities import (
    CapabilityConfigurationError,
    CapabilityError,
    CapabilityTimeoutError,
)
from src.extraction.models import (
    ClassificationResult,
    FeedbackSignal,
    PostDraft,
    SignalDraft,
    get_classification_response_schema,
    get_post_draft_response_schema,
    get_signal_response_schema,
)
from src.extraction.prompt_templates import (
    build_classifier_prompt,
    build_interpreter_prompt,
    build_post_draft_prompt,
    compute_prompt_hash,
)
from src.ingestion.models import RawFeedbackItem

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class GeminiClientError(CapabilityError):
    """Base exception for Gemini client errors."""

    pass


class GeminiAPIError(GeminiClientError):
    """Error from Gemini API call."""

    pass


class GeminiRequestError(GeminiClientError):
    """Gemini rejected the request itself (bad argument, auth, missing model).

    Sending the same request again cannot succeed, so it is never retried.
    """

    retryable = False


class GeminiParseError(GeminiClientError):
    """Error parsing Gemini response."""

    pass


class GeminiTimeoutError(GeminiClientError, CapabilityTimeoutError):
    """Gemini call exceeded timeout."""

    pass


class GeminiConfigurationError(GeminiClientError, CapabilityConfigurationError):
    """google-genai missing or client could not be created."""

    retryable = False


@dataclass
class GeminiResponse:
    """Structured response from a Gemini call."""

    raw_text: str
    parsed_json: Dict[str, Any]
    usage_metadata: Optional[Dict[str, Any]] = None


def parse_json_text(raw_text: str) -> Dict[str, Any]:
    """Parse model output as a JSON object, tolerating a markdown code fence."""
    text = raw_text.strip()
    match = _CODE_FENCE.match(text)
    if match:
        text = match.group(1)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise GeminiParseError(f"Invalid JSON in Gemini response: {e}") from e
    if not isinstance(parsed, dict):
        raise GeminiParseError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


class GeminiClient:
    """Client for calling Gemini via google-genai SDK.

    Handles:
    - Structured JSON output via response_mime_type and response_schema
    - Retry with exponential backoff (3 attempts)
    - Timeout per call via a thread pool executor
    - Error classification for the state machine (rejected requests and
      configuration errors are not retryable)
    """

    def __init__(self, config: GeminiConfig):
        self.config = config
        self._client = None
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="gemini-call")

    def _get_client(self):
        """Lazy-load the google-genai client."""
        if self._client is None:
            try:
                from google import genai
                from google.genai.types import HttpOptions

                self._client = genai.Client(
                    vertexai=True,
                    project=None,  # Uses GOOGLE_CLOUD_PROJECT from env
                    location=self.config.location,
                    http_options=HttpOptions(api_version="v1"),
                )
            except Exception as e:
                raise GeminiConfigurationError(f"Failed to initialize Gemini client: {e}") from e

        return self._client

    def _make_api_call(self, prompt: str, response_schema: Dict[str, Any]) -> GeminiResponse:
        """Make the actual Gemini API call.

        Raises:
            GeminiAPIError: On rate limits and 5xx errors (retried).
            GeminiRequestError: On any other API error (not retried).
            GeminiParseError: If the response cannot be parsed as JSON.
        """
        client = self._get_client()

        try:
            from google.genai import types

            config = types.GenerateContentConfig(
                temperature=self.config.temperature,
                max_output_tokens=self.config.max_output_tokens,
                response_mime_type="application/json",
                response_schema=response_schema,
            )
            response = client.models.generate_content(
                model=self.config.model,
                contents=prompt,
                config=config,
            )

            if not response.text:
                raise GeminiParseError("Empty response from Gemini")

            usage_metadata = None
            if getattr(response, "usage_metadata", None):
                usage_metadata = {
                    "prompt_token_count": getattr(response.usage_metadata, "prompt_token_count", None),
                    "candidates_token_count": getattr(
                        response.usage_metadata, "candidates_token_count", None
                    ),
                    "total_token_count": getattr(response.usage_metadata, "total_token_count", None),
                }

            return GeminiResponse(
                raw_text=response.text,
                parsed_json=parse_json_text(response.text),
                usage_metadata=usage_metadata,
            )

        except GeminiParseError:
            raise
        except Exception as e:
            error_msg = str(e)

            if "429" in error_msg or "rate limit" in error_msg.lower():
                logger.warning(f"Gemini rate limit hit, will retry: {error_msg}")
                raise GeminiAPIError(f"Rate limit exceeded: {error_msg}") from e

            if any(code in error_msg for code in ["500", "502", "503", "504"]):
                logger.warning(f"Gemini transient error, will retry: {error_msg}")
                raise GeminiAPIError(f"Transient error: {error_msg}") from e

            logger.error(f"Gemini request rejected: {error_msg}")
            raise GeminiRequestError(f"Request rejected: {error_msg}") from e

    @retry(
        retry=retry_if_exception_type(GeminiAPIError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    def generate_json(self, prompt: str, response_schema: Dict[str, Any]) -> GeminiResponse:
        """Call Gemini with a timeout and return parsed JSON.

        Raises:
            GeminiTimeoutError: If the request exceeds the timeout.
            GeminiAPIError: On rate limits and 5xx errors (retried).
            GeminiRequestError: If Gemini rejects the request (not retried).
            GeminiParseError: If the response cannot be parsed as JSON.
            GeminiClientError: For other client-side errors.
        """
        future = self._executor.submit(self._make_api_call, prompt, response_schema)
        try:
            return future.result(timeout=self.config.request_timeout_sec)
        except FuturesTimeoutError:
            future.cancel()
            error_msg = f"Gemini request exceeded timeout of {self.config.request_timeout_sec}s"
            logger.warning(error_msg)
            raise GeminiTimeoutError(error_msg)
        except GeminiClientError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error in generate_json: {e}")
            raise GeminiClientError(f"Unexpected error: {e}") from e

    def classify(self, text: str) -> ClassificationResult:
        """Judge whether a message is actionable product feedback."""
        prompt = build_classifier_prompt(text)
        response = self.generate_json(prompt, get_classification_response_schema())
        try:
            result = ClassificationResult.model_validate(response.parsed_json)
        except ValidationError as e:
            raise GeminiParseError(f"Classifier response failed validation: {e}") from e

        logger.debug(
            "Classified message",
            extra={
                "prompt_hash": compute_prompt_hash(prompt),
                "actionable": result.actionable,
                "usage": response.usage_metadata,
            },
        )
        return result

    def interpret(self, text: str) -> List[SignalDraft]:
        """Extract typed signals from a message.

        Individual malformed signals are skipped; a response without a
        ``signals`` list is a parse error.
        """
        prompt = build_interpreter_prompt(text)
        response = self.generate_json(prompt, get_signal_response_schema())

        raw_signals = response.parsed_json.get("signals")
        if not isinstance(raw_signals, list):
            raise GeminiParseError("Interpreter response is missing a 'signals' list")

        drafts: List[SignalDraft] = []
        for raw in raw_signals:
            try:
                drafts.append(SignalDraft.model_validate(raw))
            except ValidationError as e:
                logger.warning(
                    "Skipping malformed signal from interpreter",
                    extra={"prompt_hash": compute_prompt_hash(prompt), "error": str(e)},
                )
        return drafts

    def draft_post(
        self,
        signal: FeedbackSignal,
        item: RawFeedbackItem,
        board_ids: Sequence[str],
    ) -> PostDraft:
        """Draft a board post title and body for a signal with no merge target."""
        prompt = build_post_draft_prompt(signal, item, board_ids)
        response = self.generate_json(prompt, get_post_draft_response_schema())
        try:
            draft = PostDraft.model_validate(response.parsed_json)
        except ValidationError as e:
            raise GeminiParseError(f"Post draft response failed validation: {e}") from e

        logger.debug(
            "Drafted post",
            extra={
                "prompt_hash": compute_prompt_hash(prompt),
                "signal_id": signal.id,
                "board_id": draft.board_id,
                "usage": response.usage_metadata,
            },
        )
        return draft

    def get_model_info(self) -> Dict[str, Any]:
        """Return current model configuration for logging."""
        return {
            "model": self.config.model,
            "temperature": self.config.temperature,
            "max_output_tokens": self.config.max_output_tokens,
            "location": self.config.location,
            "request_timeout_sec": self.config.request_timeout_sec,
        }


def create_gemini_client(config: GeminiConfig) -> GeminiClient:
    """Factory function to create a GeminiClient."""
    return GeminiClient(config)
