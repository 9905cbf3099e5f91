"""HTTP client for the Gemini generateContent endpoint"""
from typing import Any, Dict, Optional

import httpx
import logging

from exceptions import EmptyUpstreamContent, UpstreamError, UpstreamRateLimited

logger = logging.getLogger(__name__)

UNKNOWN_API_ERROR = "Unknown API error."


def extract_text(result: Dict[str, Any]) -> Optional[str]:
    """First candidate, first part, text"""
    try:
        return result["candidates"][0]["content"]["parts"][0].get("text") or None
    except (KeyError, IndexError, TypeError, AttributeError):
        return None


def extract_image(result: Dict[str, Any]) -> Optional[str]:
    """Base64 data of the first inlineData part of the first candidate"""
    try:
        parts = result["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return None
    for part in parts or []:
        if isinstance(part, dict) and part.get("inlineData"):
            return part["inlineData"].get("data") or None
    return None


def _error_details(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or UNKNOWN_API_ERROR
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("message") or UNKNOWN_API_ERROR
    return UNKNOWN_API_ERROR


class GeminiClient:
    """Posts payloads to {api_base}/{model}:generateContent with the server key"""

    def __init__(
        self,
        api_key: str,
        api_base: str,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def endpoint(self, model: str) -> str:
        return f"{self.api_base}/{model}:generateContent"

    async def generate_content(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST the payload; returns the parsed JSON body or raises UpstreamError"""
        url = self.endpoint(model)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                logger.info(f"Calling Gemini endpoint: {url}")
                response = await client.post(
                    url,
                    params={"key": self.api_key},
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.error(f"HTTP call to Gemini failed: {type(e).__name__}: {str(e)}")
            raise UpstreamError(f"Network error calling the API: {str(e) or type(e).__name__}")

        if response.status_code == 429:
            logger.error(f"API error (status 429): {_error_details(response)}")
            raise UpstreamRateLimited()

        if not response.is_success:
            details = _error_details(response)
            logger.error(f"API error (status {response.status_code}): {details}")
            raise UpstreamError(f"API call error: {details}", status_code=response.status_code)

        try:
            return response.json()
        except ValueError:
            raise UpstreamError(
                "API returned a response that is not valid JSON.",
                status_code=response.status_code,
            )

    async def generate_image(self, model: str, payload: Dict[str, Any]) -> str:
        result = await self.generate_content(model, payload)
        base64_data = extract_image(result)
        if not base64_data:
            raise EmptyUpstreamContent("Gemini API response did not contain valid image data.", status_code=200)
        return base64_data

    async def generate_text(self, model: str, payload: Dict[str, Any]) -> str:
        result = await self.generate_content(model, payload)
        text = extract_text(result)
        if not text:
            raise EmptyUpstreamContent("Empty text response from the API.", status_code=200)
        return text
