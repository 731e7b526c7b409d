"""Client for the background-removal service (Replicate predictions API)."""

import asyncio
import base64
import logging
import time

import httpx

from ..config import BackgroundRemovalConfig
from ..errors import ExternalServiceError, ExternalServiceTimeout, InvalidImage
from ..utils.image_codec import decode_image

logger = logging.getLogger(__name__)

STAGE = "background_removal"
TERMINAL_STATES = {"succeeded", "failed", "canceled"}


class BackgroundRemovalClient:
    """Cuts a garment out of its photo so it has a usable alpha channel."""

    def __init__(self, config: BackgroundRemovalConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_token)

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers={"Authorization": f"Bearer {self.config.api_token}"},
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def remove_background(self, image_png: bytes) -> bytes:
        """Return the cutout as encoded image bytes. The result is guaranteed to carry alpha."""
        if not self.is_configured:
            raise ExternalServiceError("background removal has no API token", stage=STAGE)

        payload = {
            "version": self.config.version,
            "input": {"image": "data:image/png;base64," + base64.b64encode(image_png).decode("utf-8")},
        }
        logger.info("Submitting background removal prediction")
        prediction = await self._request("POST", "/predictions", json=payload, headers={"Prefer": "wait"})
        prediction = await self._wait_for(prediction)

        output = prediction.get("output")
        if isinstance(output, list):
            output = output[0] if output else None
        if not output:
            raise ExternalServiceError("prediction finished without output", stage=STAGE, id=prediction.get("id"))

        try:
            response = await self.client.get(output)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ExternalServiceTimeout(f"cutout download timed out: {e}", stage=STAGE) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"cutout download failed: {e}", stage=STAGE) from e

        try:
            cutout = decode_image(response.content)
        except InvalidImage as e:
            raise ExternalServiceError(f"cutout is not an image: {e.message}", stage=STAGE) from e
        if not cutout.has_alpha:
            raise ExternalServiceError("cutout has no alpha channel", stage=STAGE)
        return response.content

    async def _wait_for(self, prediction: dict) -> dict:
        """Poll until the prediction reaches a terminal state or the deadline passes."""
        deadline = time.monotonic() + self.config.timeout_seconds
        while prediction.get("status") not in TERMINAL_STATES:
            if time.monotonic() >= deadline:
                raise ExternalServiceTimeout("prediction did not finish in time", stage=STAGE, id=prediction.get("id"))
            await asyncio.sleep(self.config.poll_interval)
            poll_url = (prediction.get("urls") or {}).get("get") or f"/predictions/{prediction.get('id')}"
            prediction = await self._request("GET", poll_url)

        if prediction["status"] != "succeeded":
            raise ExternalServiceError(
                f"prediction {prediction['status']}: {prediction.get('error')}",
                stage=STAGE,
                id=prediction.get("id"),
            )
        return prediction

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ExternalServiceTimeout(f"request timed out: {e}", stage=STAGE) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"request failed: {e}", stage=STAGE) from e

        if response.status_code not in (200, 201):
            raise ExternalServiceError(
                f"service rejected request: {response.text[:500]}",
                stage=STAGE,
                status_code=response.status_code,
            )
        try:
            prediction = response.json()
        except ValueError as e:
            raise ExternalServiceError(f"service returned a non-JSON body: {response.text[:200]}", stage=STAGE) from e
        if not isinstance(prediction, dict):
            raise ExternalServiceError("prediction is not a JSON object", stage=STAGE)
        return prediction

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
