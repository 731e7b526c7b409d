"""Fitting pipeline: external edit with an identity guard, heuristic placement as fallback."""

import asyncio
import hashlib
import logging
import uuid
from collections import OrderedDict
from datetime import datetime

from pydantic import BaseModel, Field

from ..config import FittingConfig
from ..errors import (
    AmbiguousHumanRegion,
    ExternalServiceError,
    ExternalServiceTimeout,
    InvalidImage,
    MaskDerivationFailed,
    PlacementError,
)
from ..fitting import (
    CompositeGuard,
    GarmentInput,
    GarmentPlacementEngine,
    HumanRegionDetector,
    Mask,
    MaskMode,
    PoseEstimator,
    build_mask,
    select_region,
)
from ..models import FittingSession, FittingState, GarmentItem, HumanRegion, PoseKeypoints, ShoulderCalibration
from ..services import BackgroundRemovalClient, ImageEditClient
from ..utils.image_codec import ImageBuffer, decode_image, encode_png
from ..utils.normalizer import normalize_bytes

logger = logging.getLogger(__name__)


class GarmentUpload(BaseModel):
    """A garment as received from the caller: catalog item plus encoded art."""
    item: GarmentItem
    image: bytes


class FittingRequest(BaseModel):
    """Everything one fitting run needs."""

    person_image: bytes = Field(..., description="Encoded person photo")
    garments: list[GarmentUpload] = Field(default_factory=list)

    region_index: int | None = Field(default=None, description="Chosen person when several are detected")
    calibration: ShoulderCalibration | None = Field(default=None, description="Operator-placed shoulders")
    mask_cutout: bytes | None = Field(default=None, description="Background-removed person for an alpha-derived mask")

    use_external_edit: bool = True
    allow_fallback: bool = True
    remove_garment_background: bool = False

    idempotency_key: str | None = None
    instruction: str | None = None


class FittingOutcome(BaseModel):
    """Session record plus the final PNG (None while a region choice is pending)."""
    session: FittingSession
    image: bytes | None = None


def make_idempotency_key(person_image: bytes, garment_ids: list[str]) -> str:
    """Stable key for a photo + garment selection."""
    digest = hashlib.sha256(person_image)
    for garment_id in garment_ids:
        digest.update(b"\x00")
        digest.update(str(garment_id).encode("utf-8"))
    return digest.hexdigest()


class IdempotencyCache:
    """Bounded LRU of completed outcomes, owned by the caller."""

    def __init__(self, max_size: int = 64):
        self.max_size = max(1, max_size)
        self._entries: OrderedDict[str, FittingOutcome] = OrderedDict()

    def get(self, key: str) -> FittingOutcome | None:
        outcome = self._entries.get(key)
        if outcome is not None:
            self._entries.move_to_end(key)
        return outcome

    def put(self, key: str, outcome: FittingOutcome) -> None:
        self._entries[key] = outcome
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class FittingPipeline:
    """Dress a person photo with one or more garments.

    Flow:
    1. Normalize the person photo onto the canonical canvas
    2. External path: build a mask, call the edit service, guard the result
    3. Heuristic path (no service, or fallback): detect or calibrate a pose,
       place garments by category and composite them in z-order

    Pixels outside the editable region always come back unchanged.
    """

    def __init__(
        self,
        config: FittingConfig,
        edit_client: ImageEditClient | None = None,
        background_client: BackgroundRemovalClient | None = None,
    ):
        self.config = config

        # Initialize services
        self.edit_client = edit_client or ImageEditClient(config.edit_service)
        self.background_client = background_client or BackgroundRemovalClient(config.background_removal)

        # Initialize fitting stages
        self.pose_estimator = PoseEstimator(config.pose)
        self.detector = HumanRegionDetector(config.detector, self.pose_estimator)
        self.placement = GarmentPlacementEngine(config.placement, config.canvas.size)
        self.guard = CompositeGuard(config.guard)

    async def run(self, request: FittingRequest, cache: IdempotencyCache | None = None) -> FittingOutcome:
        """Run one fitting request.

        Args:
            request: Person photo, garments and options
            cache: Optional caller-owned cache consulted by idempotency key

        Returns:
            FittingOutcome with the session record and final PNG bytes
        """
        key = request.idempotency_key
        if cache is not None and key:
            cached = cache.get(key)
            if cached is not None:
                logger.info(f"Idempotency hit for {key[:12]}, returning session {cached.session.session_id}")
                return cached.model_copy(deep=True)

        session = self._create_session(key)
        logger.info(f"Session {session.session_id}: {len(request.garments)} garment(s)")
        session.status = "running"

        try:
            self._transition(session, FittingState.NORMALIZING)
            width, height = self.config.canvas.size
            person = normalize_bytes(request.person_image, width, height)
            garments = await self._load_garments(request)

            final = None
            if self._use_external(request, garments):
                session.path = "external"
                logger.info(f"Session {session.session_id}: external edit path")
                try:
                    final = await self._external_edit(session, person, garments, request)
                except ExternalServiceError as e:
                    if not request.allow_fallback:
                        raise
                    session.fallback_reason = str(e)
                    logger.warning(f"Session {session.session_id}: external edit failed, falling back: {e}")

            if final is None:
                session.path = "heuristic"
                final = self._heuristic(session, person, garments, request)
                if final is None:
                    return FittingOutcome(session=session)

            session.complete()
            self._log_state(session)
            outcome = FittingOutcome(session=session, image=encode_png(final))

        except Exception as e:
            session.fail(str(e))
            logger.error(f"Session {session.session_id} failed: {e}")
            raise

        if cache is not None and key:
            cache.put(key, outcome)
        return outcome

    def detect_regions(self, photo: bytes) -> list[HumanRegion]:
        """Candidate people on the normalized photo, for the selection/calibration UI."""
        width, height = self.config.canvas.size
        return self.detector.detect(normalize_bytes(photo, width, height))

    def build_mask(self, cutout: bytes | None = None) -> Mask:
        """Mask over the canonical canvas: alpha-derived from a cutout, else the garment box."""
        if cutout is None:
            return build_mask(self.config.canvas.size, MaskMode.GARMENT_BOX, self.config.mask)
        return build_mask(self.config.canvas.size, MaskMode.ALPHA, self.config.mask, decode_image(cutout))

    async def remove_background(self, image: bytes) -> bytes:
        return await self.background_client.remove_background(image)

    async def check_connection(self) -> bool:
        return await self.edit_client.check_connection()

    async def close(self):
        await self.edit_client.close()
        await self.background_client.close()

    def _use_external(self, request: FittingRequest, garments: list[GarmentInput]) -> bool:
        if not request.use_external_edit or not garments:
            return False
        if not self.edit_client.is_configured:
            logger.info("Edit service not configured, using heuristic placement")
            return False
        return True

    async def _load_garments(self, request: FittingRequest) -> list[GarmentInput]:
        garments = []
        for upload in request.garments:
            image = decode_image(upload.image)
            if not image.has_alpha and request.remove_garment_background and self.background_client.is_configured:
                image = await self._cut_out(upload, image)
            garments.append(GarmentInput(item=upload.item, image=image))
        return garments

    async def _cut_out(self, upload: GarmentUpload, image: ImageBuffer) -> ImageBuffer:
        try:
            return decode_image(await self.background_client.remove_background(upload.image))
        except (ExternalServiceError, InvalidImage) as e:
            logger.warning(f"Background removal failed for garment {upload.item.id}, using original art: {e}")
            return image

    async def _external_edit(
        self,
        session: FittingSession,
        person: ImageBuffer,
        garments: list[GarmentInput],
        request: FittingRequest,
    ) -> ImageBuffer:
        self._transition(session, FittingState.BUILDING_MASK)
        mask = self._mask_for(request)

        self._transition(session, FittingState.AWAITING_EXTERNAL_EDIT)
        first, *rest = garments
        if rest:
            logger.info(f"External edit uses garment {first.item.id} only; ignoring {[g.item.id for g in rest]}")

        timeout = self.config.edit_service.timeout_seconds
        try:
            edited_bytes = await asyncio.wait_for(
                self.edit_client.edit(
                    person_png=encode_png(person),
                    garment_pngs=[encode_png(first.image)],
                    mask_png=encode_png(mask.to_image()),
                    instruction=request.instruction,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExternalServiceTimeout("edit service did not answer in time", stage="external_edit", timeout=timeout) from e

        try:
            edited = decode_image(edited_bytes)
        except InvalidImage as e:
            raise ExternalServiceError(f"edit service returned an undecodable image: {e.message}", stage="external_edit") from e

        self._transition(session, FittingState.GUARDING)
        return self.guard.compose(person, mask, edited)

    def _mask_for(self, request: FittingRequest) -> Mask:
        size = self.config.canvas.size
        if request.mask_cutout is None:
            return build_mask(size, MaskMode.GARMENT_BOX, self.config.mask)

        cutout = decode_image(request.mask_cutout)
        try:
            return build_mask(size, MaskMode.ALPHA, self.config.mask, cutout)
        except MaskDerivationFailed as e:
            if not request.allow_fallback:
                raise
            logger.warning(f"Alpha mask unavailable, using garment box: {e}")
            return build_mask(size, MaskMode.GARMENT_BOX, self.config.mask)

    def _heuristic(
        self,
        session: FittingSession,
        person: ImageBuffer,
        garments: list[GarmentInput],
        request: FittingRequest,
    ) -> ImageBuffer | None:
        self._transition(session, FittingState.HEURISTIC_PLACEMENT)
        pose = self._resolve_pose(session, person, request)
        if pose is None:
            return None

        result = self.placement.render(person, garments, pose)
        session.placements = result.placements
        session.garment_failures = result.failures
        if result.failures:
            logger.warning(f"Session {session.session_id}: {len(result.failures)} garment(s) dropped")
        return result.image

    def _resolve_pose(self, session: FittingSession, person: ImageBuffer, request: FittingRequest) -> PoseKeypoints | None:
        if request.calibration is not None:
            try:
                return self.pose_estimator.from_calibration(request.calibration)
            except ValueError as e:
                raise PlacementError(str(e), stage="calibration") from e

        regions = self.detector.detect(person)
        session.regions = regions
        try:
            region = select_region(regions, request.region_index)
        except AmbiguousHumanRegion as e:
            session.status = "needs_selection"
            session.final_message = str(e)
            logger.info(f"Session {session.session_id}: {len(regions)} candidate regions, waiting for a choice")
            return None

        session.selected_region = regions.index(region)
        return self.pose_estimator.estimate(region)

    def _transition(self, session: FittingSession, state: FittingState):
        session.transition(state)
        self._log_state(session)

    def _log_state(self, session: FittingSession):
        logger.info(f"Session {session.session_id}: -> {session.state.value}")

    def _create_session(self, idempotency_key: str | None) -> FittingSession:
        session_id = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"
        return FittingSession(session_id=session_id, idempotency_key=idempotency_key)
