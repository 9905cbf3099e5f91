"""Request handling for the image-generation and suggestion proxies"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ValidationError

from config import Settings
from exceptions import RequestParseError
from schemas import (
    EmptyContent,
    Error,
    ErrorResponse,
    ImageResponse,
    Success,
    SuggestionRequest,
    SuggestionResponse,
    UpstreamResult,
    parse_composition_request,
)
from services.gemini_client import GeminiClient
from services.payload_service import build_composition_payload, build_suggestion_payload
from services.retry_service import CancellationToken, RetryingCaller

logger = logging.getLogger(__name__)

MISSING_API_KEY_MESSAGE = "API key not configured. Check the server environment variables."
EMPTY_IMAGE_MESSAGE = "Empty image response from the API."
EMPTY_TEXT_MESSAGE = "Empty text response from the API."
RETRIES_EXHAUSTED_MESSAGE = "Failed to communicate with the Gemini API after several attempts."
IMAGE_INTERNAL_ERROR_MESSAGE = "Internal server error while processing the request."
SUGGESTION_INTERNAL_ERROR_MESSAGE = "Internal server error while processing the suggestion request."


@dataclass
class ProxyResponse:
    status_code: int
    body: Dict[str, Any]


def _error(status_code: int, message: str, error: Optional[str] = None) -> ProxyResponse:
    return ProxyResponse(status_code, ErrorResponse(message=message, error=error).model_dump(exclude_none=True))


def _ok(model: BaseModel) -> ProxyResponse:
    return ProxyResponse(200, model.model_dump())


def parse_body(raw: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(raw or b"")
    except (ValueError, UnicodeDecodeError) as e:
        raise RequestParseError(f"Invalid JSON body: {str(e)}")
    if not isinstance(data, dict):
        raise RequestParseError("Request body must be a JSON object.")
    return data


def _validation_details(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(loc) for loc in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
    )


class ProxyService:
    """Validates a request, calls the upstream through the retrying caller, and maps the outcome"""

    def __init__(
        self,
        settings: Settings,
        client: Optional[GeminiClient] = None,
        image_caller: Optional[RetryingCaller] = None,
        suggestion_caller: Optional[RetryingCaller] = None,
    ):
        self.settings = settings
        if client is None and settings.api_key_configured:
            client = GeminiClient(settings.api_key, settings.api_base, timeout=settings.upstream_timeout)
        self.client = client
        self.image_caller = image_caller or RetryingCaller(
            max_attempts=settings.image_max_attempts,
            base_delay=settings.retry_base_delay,
            policy=settings.retry_policy,
        )
        self.suggestion_caller = suggestion_caller or RetryingCaller(
            max_attempts=settings.suggestion_max_attempts,
            base_delay=settings.retry_base_delay,
            policy=settings.retry_policy,
        )

    async def _call_upstream(self, caller: RetryingCaller, call: Callable[[], Awaitable[str]]) -> UpstreamResult:
        token = CancellationToken()
        if self.settings.request_deadline:
            token.cancel_after(self.settings.request_deadline)
        try:
            return await caller.call(call, token)
        finally:
            token.dispose()

    @staticmethod
    def _map_result(result: UpstreamResult, build_success: Callable[[str], BaseModel], empty_message: str) -> ProxyResponse:
        if isinstance(result, Success):
            return _ok(build_success(result.artifact))
        if isinstance(result, EmptyContent):
            return _error(500, empty_message, result.message)
        if isinstance(result, Error) and result.retries_exhausted:
            return _error(500, RETRIES_EXHAUSTED_MESSAGE, result.message)
        return _error(result.status_code or 500, result.message)

    async def generate_image(self, raw_body: bytes) -> ProxyResponse:
        """Compose the person and item images into a try-on image"""
        try:
            data = parse_body(raw_body)

            if not self.settings.api_key_configured or self.client is None:
                logger.error("GEMINI_API_KEY not configured. Refusing to call the API.")
                return _error(500, MISSING_API_KEY_MESSAGE)

            try:
                request = parse_composition_request(data)
            except ValidationError as e:
                logger.warning(f"Invalid image generation request: {_validation_details(e)}")
                return _error(400, "Both the model image and the item image are required.", _validation_details(e))

            logger.info(f"Image generation request (schema v{request.schemaVersion})")
            payload = build_composition_payload(request)
            model = self.settings.image_model
            result = await self._call_upstream(
                self.image_caller, lambda: self.client.generate_image(model, payload)
            )
            response = self._map_result(result, lambda image: ImageResponse(base64Image=image), EMPTY_IMAGE_MESSAGE)
            logger.info(f"Image generation finished with status {response.status_code}")
            return response

        except Exception as e:
            logger.error(f"Error processing image generation request: {str(e)}")
            return _error(500, IMAGE_INTERNAL_ERROR_MESSAGE, str(e))

    async def get_suggestion(self, raw_body: bytes) -> ProxyResponse:
        try:
            data = parse_body(raw_body)

            if not self.settings.api_key_configured or self.client is None:
                logger.error("GEMINI_API_KEY not configured. Refusing to call the API.")
                return _error(500, MISSING_API_KEY_MESSAGE)

            try:
                request = SuggestionRequest.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Invalid suggestion request: {_validation_details(e)}")
                return _error(400, "A prompt is required.", _validation_details(e))

            payload = build_suggestion_payload(request)
            model = self.settings.text_model
            result = await self._call_upstream(
                self.suggestion_caller, lambda: self.client.generate_text(model, payload)
            )
            response = self._map_result(result, lambda text: SuggestionResponse(text=text), EMPTY_TEXT_MESSAGE)
            logger.info(f"Suggestion finished with status {response.status_code}")
            return response

        except Exception as e:
            logger.error(f"Error processing suggestion request: {str(e)}")
            return _error(500, SUGGESTION_INTERNAL_ERROR_MESSAGE, str(e))
