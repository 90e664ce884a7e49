"""Azure Computer Vision client for analysing extracted images."""

from __future__ import annotations

import httpx
from loguru import logger
from pydantic import ValidationError

from mailvision.application.ports.image_analyzer import ImageAnalyzer
from mailvision.domain.errors import AnalysisServiceError
from mailvision.domain.models import AnalysisResult

DEFAULT_FEATURES = ("Categories", "Description", "Tags", "Objects")


class AzureVisionAnalyzer(ImageAnalyzer):
    """Calls ``/vision/v3.2/analyze`` with the raw image bytes."""

    API_PATH = "/vision/v3.2/analyze"

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        features: list[str] | tuple[str, ...] = DEFAULT_FEATURES,
        timeout: float = 30.0,
        retries: int = 2,
        transport: httpx.BaseTransport | None = None,
    ):
        if not endpoint:
            raise ValueError("VISION_ENDPOINT is required")
        if not api_key:
            raise ValueError("VISION_API_KEY is required")

        self.endpoint = endpoint.rstrip("/")
        self.features = list(features)
        self._client = httpx.Client(
            transport=transport or httpx.HTTPTransport(retries=retries),
            timeout=timeout,
            headers={"Ocp-Apim-Subscription-Key": api_key},
        )

    def analyze(self, data: bytes) -> AnalysisResult:
        """Analyse one image. Raises AnalysisServiceError on any failure."""
        try:
            response = self._client.post(
                f"{self.endpoint}{self.API_PATH}",
                params={"visualFeatures": ",".join(self.features)},
                headers={"Content-Type": "application/octet-stream"},
                content=data,
            )
        except httpx.TimeoutException as e:
            logger.error(f"Vision API timeout analysing {len(data)} bytes")
            raise AnalysisServiceError(f"request timed out: {e}", retriable=True) from e
        except httpx.HTTPError as e:
            logger.error(f"Vision API transport error: {e}")
            raise AnalysisServiceError(f"transport error: {e}", retriable=True) from e

        if response.status_code != 200:
            error_text = response.text
            retriable = response.status_code == 429 or response.status_code >= 500
            logger.error(f"Vision API error {response.status_code}: {error_text[:200]}")
            raise AnalysisServiceError(
                f"HTTP {response.status_code}: {error_text[:200]}",
                retriable=retriable,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise AnalysisServiceError(f"invalid JSON response: {e}", retriable=False, status_code=200) from e

        try:
            result = AnalysisResult.from_azure(payload)
        except ValidationError as e:
            raise AnalysisServiceError(f"unexpected response shape: {e}", retriable=False, status_code=200) from e

        logger.debug(f"Vision API analysed image: {result.caption!r} ({len(result.tags)} tags)")
        return result

    def close(self) -> None:
        self._client.close()
