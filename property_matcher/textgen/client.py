"""HTTP client for the text-generation service used to draft messages.

Any callable ``(prompt, output_schema) -> {"subject": ..., "body": ...}`` can
act as a text generator; HTTPTextGenerator is the production implementation.
"""

import json
import logging
from typing import Any, Callable, Dict, Optional

import requests

from property_matcher.logging import get_logger

from .exceptions import (
    TextGenerationError,
    TextGenerationHTTPError,
    TextGenerationResponseError,
    TextGenerationTimeoutError,
)

logger = get_logger(__name__, component="textgen")

TextGenerator = Callable[[str, Dict[str, Any]], Dict[str, Any]]


class HTTPTextGenerator:
    """Posts prompts to a JSON text-generation endpoint.

    Request body: ``{"prompt": str, "response_json_schema": dict}``.
    The response may be the structured object itself, or wrap it under
    ``output``/``result``/``data``, optionally as a JSON-encoded string.

    Attributes:
        api_url: Endpoint URL
        timeout: HTTP request timeout in seconds
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30,
        user_agent: str = "PropertyMatcher/1.0",
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_url or not api_url.strip():
            raise TextGenerationError("api_url cannot be empty")
        if timeout <= 0:
            raise TextGenerationError(f"timeout must be positive, got: {timeout}")

        self.api_url = api_url.strip()
        self.timeout = timeout

        self._session = session or requests.Session()
        self._session.headers.update(
            {"User-Agent": user_agent, "Content-Type": "application/json"}
        )
        if api_key:
            self._session.headers["Authorization"] = f"Bearer {api_key}"

    def __call__(self, prompt: str, output_schema: Dict[str, Any]) -> Dict[str, Any]:
        """Generate a structured answer for ``prompt``.

        Returns:
            Dict with at least string ``subject`` and ``body``

        Raises:
            TextGenerationHTTPError: On 4xx/5xx status or connection failure
            TextGenerationTimeoutError: On request timeout
            TextGenerationResponseError: On unparseable or incomplete output
        """
        data = self._make_request({"prompt": prompt, "response_json_schema": output_schema})
        return self._extract_output(data, output_schema)

    def _make_request(self, payload: Dict[str, Any]) -> Any:
        url = self.api_url
        try:
            logger.debug(
                f"HTTP POST request to {url}",
                extra={"event": "textgen.request", "url": url, "timeout": self.timeout},
            )
            response = self._session.post(url, json=payload, timeout=self.timeout)

            if response.status_code >= 400:
                is_retryable = response.status_code >= 500 or response.status_code == 429
                logger.log(
                    logging.WARNING if is_retryable else logging.ERROR,
                    f"HTTP {response.status_code} error from {url}",
                    extra={
                        "event": "textgen.retryable_error" if is_retryable else "textgen.error",
                        "status_code": response.status_code,
                        "url": url,
                    },
                )
                raise TextGenerationHTTPError(
                    f"HTTP {response.status_code}: {response.reason}",
                    status_code=response.status_code,
                    url=url,
                )

            try:
                return response.json()
            except ValueError as e:
                raise TextGenerationResponseError(
                    f"Failed to parse JSON response from {url}: {e}"
                ) from e

        except requests.exceptions.Timeout as e:
            logger.warning(
                f"Request to {url} timed out after {self.timeout} seconds",
                extra={"event": "textgen.timeout", "url": url, "timeout": self.timeout},
            )
            raise TextGenerationTimeoutError(
                f"Request to {url} timed out after {self.timeout} seconds", url=url
            ) from e
        except requests.exceptions.RequestException as e:
            logger.error(
                f"Request to {url} failed: {e}",
                extra={"event": "textgen.error", "error_type": type(e).__name__, "url": url},
            )
            raise TextGenerationHTTPError(
                f"Request to {url} failed: {e}", status_code=0, url=url
            ) from e

    @staticmethod
    def _extract_output(data: Any, output_schema: Dict[str, Any]) -> Dict[str, Any]:
        for key in ("output", "result", "data"):
            if isinstance(data, dict) and key in data and not _has_required(data, output_schema):
                data = data[key]
                break

        if isinstance(data, str):
            try:
                data = json.loads(data)
            except ValueError as e:
                raise TextGenerationResponseError(f"Generated output is not JSON: {e}") from e

        if not isinstance(data, dict):
            raise TextGenerationResponseError(
                f"Generated output must be an object, got {type(data).__name__}"
            )

        missing = [
            name
            for name in output_schema.get("required", [])
            if not isinstance(data.get(name), str) or not data[name].strip()
        ]
        if missing:
            raise TextGenerationResponseError(
                f"Generated output is missing fields: {', '.join(missing)}"
            )
        return data


def _has_required(data: Dict[str, Any], output_schema: Dict[str, Any]) -> bool:
    return all(name in data for name in output_schema.get("required", []))
