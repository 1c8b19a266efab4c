"""HTTP clients for the remote conversion and analysis functions."""

import base64
import binascii
from typing import Any, Dict, Optional, Tuple

import requests
from pydantic import ValidationError as PydanticValidationError

from .exceptions import AnalysisError, ConfigurationError, ImageProcessingError
from .models import AnalysisResponse


class _FunctionClient:
    """Shared plumbing for authenticated JSON function calls."""

    function_name = ""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float,
        session: Optional[requests.Session] = None,
    ):
        if not base_url:
            raise ConfigurationError(f"{self.function_name} requires a functions base URL")
        if not access_token:
            raise ConfigurationError(f"{self.function_name} requires an access token")
        self.url = f"{base_url.rstrip('/')}/{self.function_name}"
        self._access_token = access_token
        self.timeout = timeout
        self._session = session or requests.Session()

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self._session.post(
            self.url,
            json=payload,
            headers={
                "Authorization": f"Bearer {self._access_token}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not response.ok:
            message = body.get("error") if isinstance(body, dict) else None
            raise requests.HTTPError(
                message or f"{self.function_name} returned HTTP {response.status_code}",
                response=response,
            )
        if not isinstance(body, dict):
            raise ValueError(f"{self.function_name} returned a non-object body")
        return body


class RemoteConversionClient(_FunctionClient):
    """Server-side HEIC conversion, the backstop after local attempts fail."""

    function_name = "convert-image"

    def convert(self, image_base64: str, mime_type: str) -> Tuple[bytes, str]:
        body = self._post({"image_base64": image_base64, "mime_type": mime_type})

        if not body.get("success"):
            raise ImageProcessingError(body.get("error") or "Server conversion failed")

        converted = body.get("converted_base64")
        if not converted:
            raise ImageProcessingError("Server conversion returned no image data")
        try:
            data = base64.b64decode(converted, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ImageProcessingError(f"Server conversion returned invalid base64: {exc}") from exc
        return data, body.get("mime_type") or "image/jpeg"


class AnalysisClient(_FunctionClient):
    """Vision analysis of an uploaded image, addressed by storage path."""

    function_name = "analyze-image"

    def analyze(self, storage_path: str) -> AnalysisResponse:
        try:
            body = self._post({"storage_path": storage_path})
        except (requests.RequestException, ValueError) as exc:
            raise AnalysisError(str(exc) or "Failed to analyze image") from exc
        if not body:
            raise AnalysisError("No data returned from analysis")
        try:
            return AnalysisResponse.model_validate(body)
        except PydanticValidationError as exc:
            raise AnalysisError(f"Malformed analysis response: {exc}") from exc
