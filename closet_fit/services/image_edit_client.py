"""Client for the external image-edit service (OpenAI images/edits contract)."""

import base64
import binascii
import logging

import httpx

from ..config import EditServiceConfig
from ..errors import ExternalServiceError, ExternalServiceTimeout

logger = logging.getLogger(__name__)

STAGE = "external_edit"


class ImageEditClient:
    """Sends person + garment + binary mask to an inpainting/edit endpoint.

    The service must only change pixels under the transparent part of the
    mask; the caller still re-imposes the original outside it.
    """

    def __init__(self, config: EditServiceConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            )
        return self._client

    async def check_connection(self) -> bool:
        """Verify the edit service is reachable with our credentials."""
        if not self.is_configured:
            return False
        try:
            response = await self.client.get("/models")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def edit(
        self,
        person_png: bytes,
        garment_pngs: list[bytes],
        mask_png: bytes,
        instruction: str | None = None,
        size: str | None = None,
    ) -> bytes:
        """Request an edit and return the encoded result image.

        Args:
            person_png: Normalized person photo (canonical canvas size)
            garment_pngs: Garment reference image(s)
            mask_png: Binary mask, transparent = editable, same size as the person
            instruction: Free-text edit instruction
            size: Requested output size, or "auto"

        Returns:
            Encoded image bytes as returned by the service
        """
        if not self.is_configured:
            raise ExternalServiceError("edit service has no API key", stage=STAGE)

        files = [("image[]", ("person.png", person_png, "image/png"))]
        files += [
            ("image[]", (f"garment_{i}.png", garment, "image/png"))
            for i, garment in enumerate(garment_pngs)
        ]
        files.append(("mask", ("mask.png", mask_png, "image/png")))
        data = {
            "model": self.config.model,
            "prompt": instruction or self.config.instruction,
            "size": size or self.config.size,
            "input_fidelity": self.config.input_fidelity,
        }

        logger.info(f"Calling edit service ({self.config.model}, size={data['size']})")
        try:
            response = await self.client.post("/images/edits", data=data, files=files)
        except httpx.TimeoutException as e:
            raise ExternalServiceTimeout(f"edit request timed out: {e}", stage=STAGE) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"edit request failed: {e}", stage=STAGE) from e

        if response.status_code != 200:
            raise ExternalServiceError(
                f"edit service rejected request: {response.text[:500]}",
                stage=STAGE,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ExternalServiceError(f"edit service returned a non-JSON body: {response.text[:200]}", stage=STAGE) from e

        return await self._extract_image(payload)

    async def _extract_image(self, payload) -> bytes:
        if not isinstance(payload, dict):
            raise ExternalServiceError("edit response is not a JSON object", stage=STAGE)
        items = payload.get("data") or []
        if not isinstance(items, list) or not items:
            raise ExternalServiceError("edit service returned no images", stage=STAGE)
        first = items[0]
        if not isinstance(first, dict):
            raise ExternalServiceError("edit response item is not an object", stage=STAGE)

        if first.get("b64_json"):
            try:
                return base64.b64decode(first["b64_json"])
            except (binascii.Error, ValueError) as e:
                raise ExternalServiceError(f"invalid b64_json in response: {e}", stage=STAGE) from e

        if first.get("url"):
            try:
                response = await self.client.get(first["url"])
                response.raise_for_status()
            except httpx.TimeoutException as e:
                raise ExternalServiceTimeout(f"result download timed out: {e}", stage=STAGE) from e
            except httpx.HTTPError as e:
                raise ExternalServiceError(f"result download failed: {e}", stage=STAGE) from e
            return response.content

        raise ExternalServiceError("edit response has neither b64_json nor url", stage=STAGE)

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
