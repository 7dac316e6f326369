"""
HTTP clients for the detector model service.

ModelServiceClient owns one httpx.AsyncClient; the detector adapters below
implement the detector contracts on top of it. Responses are validated with
pydantic, so a malformed response is a detector failure like any other.
"""
from typing import Any, Dict, Optional

import httpx

from safeguard.core.config import Settings, settings as default_settings
from safeguard.core.logging import get_logger
from safeguard.detectors.base import (
    AdultContentClassifier,
    AdultContentScores,
    CsamDetection,
    CsamDetector,
    TextClassifier,
    TextScore,
)
from safeguard.moderation.models import ImageRef

logger = get_logger("detectors.http")


class ModelServiceClient:
    """
    HTTP client for the detector model service.

    Usage:
        client = ModelServiceClient("http://localhost:8001")
        detection = await client.detect_csam(image_ref)
    """

    def __init__(
        self,
        base_url: str = None,
        token: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the model service client.

        Args:
            base_url: Model service URL (default from settings)
            token: Bearer token for the service (default from settings)
            timeout: Transport-level timeout in seconds. Per-call deadlines
                are enforced separately by the orchestrator.
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.base_url = base_url or default_settings.model_service_url
        self.token = token if token is not None else default_settings.service_token
        self.timeout = timeout or default_settings.http_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        logger.info(f"ModelServiceClient initialized with base_url={self.base_url}")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _image_payload(image: ImageRef) -> Dict[str, Any]:
        if image.url:
            return {"image_url": image.url}
        return {"image_b64": image.data_base64}

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        client = await self._get_client()
        response = await client.post(path, json=payload)
        response.raise_for_status()
        return response.json()

    # =========================================================================
    # CSAM / Age
    # =========================================================================

    async def detect_csam(self, image: ImageRef) -> CsamDetection:
        result = await self._post("/v1/csam/detect", self._image_payload(image))
        detection = CsamDetection.model_validate(result)
        logger.debug(f"CSAM: confidence={detection.csam_confidence:.3f}")
        return detection

    # =========================================================================
    # Adult content
    # =========================================================================

    async def classify_adult(self, image: ImageRef) -> AdultContentScores:
        result = await self._post("/v1/adult/classify", self._image_payload(image))
        scores = AdultContentScores.model_validate(result)
        logger.debug(f"Adult content: explicit={scores.explicit_nudity:.3f}")
        return scores

    # =========================================================================
    # Text
    # =========================================================================

    async def score_text(self, category: str, text: str) -> float:
        result = await self._post(f"/v1/text/{category}", {"text": text})
        score = TextScore.model_validate(result).score
        logger.debug(f"Text {category}: score={score:.3f}")
        return score


class HttpCsamDetector(CsamDetector):

    def __init__(self, client: ModelServiceClient):
        self.client = client

    async def detect(self, image: ImageRef) -> CsamDetection:
        return await self.client.detect_csam(image)


class HttpAdultContentClassifier(AdultContentClassifier):

    def __init__(self, client: ModelServiceClient):
        self.client = client

    async def classify(self, image: ImageRef) -> AdultContentScores:
        return await self.client.classify_adult(image)


class HttpTextClassifier(TextClassifier):

    def __init__(self, client: ModelServiceClient, category: str):
        self.client = client
        self.category = category

    async def score(self, text: str) -> float:
        return await self.client.score_text(self.category, text)


def build_http_detectors(
    config_settings: Settings = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """Build the production detector set sharing one model service client."""
    s = config_settings or default_settings
    client = ModelServiceClient(
        base_url=s.model_service_url,
        token=s.service_token,
        timeout=s.http_timeout_seconds,
        transport=transport,
    )
    return {
        "client": client,
        "csam_detector": HttpCsamDetector(client),
        "adult_classifier": HttpAdultContentClassifier(client),
        "text_classifiers": [
            HttpTextClassifier(client, "hate_speech"),
            HttpTextClassifier(client, "harassment"),
            HttpTextClassifier(client, "spam"),
        ],
    }
