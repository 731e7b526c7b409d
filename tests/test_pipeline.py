"""Tests for full pipeline execution with mocked external services."""

import asyncio
import io

import httpx
import pytest
from unittest.mock import AsyncMock

from PIL import Image

from closet_fit.config import EditServiceConfig, FittingConfig
from closet_fit.errors import ExternalServiceError, InvalidImage, MaskDerivationFailed, PlacementError
from closet_fit.models import FittingState, GarmentItem, Point, ShoulderCalibration
from closet_fit.pipeline import (
    FittingOutcome,
    FittingPipeline,
    FittingRequest,
    GarmentUpload,
    IdempotencyCache,
    make_idempotency_key,
)
from closet_fit.services import BackgroundRemovalClient, ImageEditClient
from closet_fit.utils import decode_image
from tests.conftest import png_bytes

BLUE_EDIT = png_bytes(Image.new("RGB", (1024, 1536), (0, 0, 255)))


def heuristic_config():
    return FittingConfig(edit_service=EditServiceConfig(api_key=None))


def external_config(timeout=5.0):
    return FittingConfig(edit_service=EditServiceConfig(api_key="test-key", timeout_seconds=timeout))


def request_for(person, garment_png, **options):
    upload = GarmentUpload(item=GarmentItem(id="g1", category="T恤"), image=garment_png)
    return FittingRequest(person_image=person, garments=[upload], **options)


def pixel(image_bytes, x, y):
    return Image.open(io.BytesIO(image_bytes)).convert("RGBA").getpixel((x, y))


class TestPipelineInitialization:
    """Tests for pipeline initialization."""

    def test_pipeline_creates_with_config(self):
        pipeline = FittingPipeline(heuristic_config())

        assert pipeline.config is not None
        assert pipeline.edit_client is not None
        assert pipeline.detector is not None
        assert pipeline.placement is not None
        assert pipeline.guard is not None

    def test_edit_client_needs_api_key(self):
        assert FittingPipeline(heuristic_config()).edit_client.is_configured is False
        assert FittingPipeline(external_config()).edit_client.is_configured is True


class TestExternalPath:
    """Tests for the external edit path and its guard."""

    @pytest.fixture
    def pipeline(self):
        pipeline = FittingPipeline(external_config())
        pipeline.edit_client.edit = AsyncMock(return_value=BLUE_EDIT)
        return pipeline

    @pytest.mark.asyncio
    async def test_edit_is_guarded(self, pipeline, red_png, garment_png):
        outcome = await pipeline.run(request_for(red_png, garment_png))

        session = outcome.session
        assert session.status == "completed"
        assert session.path == "external"
        assert session.states == [
            FittingState.IDLE,
            FittingState.NORMALIZING,
            FittingState.BUILDING_MASK,
            FittingState.AWAITING_EXTERNAL_EDIT,
            FittingState.GUARDING,
            FittingState.DONE,
        ]
        assert pixel(outcome.image, 0, 0) == (255, 0, 0, 255)
        assert pixel(outcome.image, 512, 720) == (0, 0, 255, 255)

    @pytest.mark.asyncio
    async def test_only_first_garment_is_sent(self, pipeline, red_png, garment_png, opaque_garment_png):
        request = FittingRequest(
            person_image=red_png,
            garments=[
                GarmentUpload(item=GarmentItem(id="a", category="top"), image=garment_png),
                GarmentUpload(item=GarmentItem(id="b", category="coat"), image=opaque_garment_png),
            ],
            instruction="Put on the shirt",
        )

        await pipeline.run(request)

        kwargs = pipeline.edit_client.edit.call_args.kwargs
        assert len(kwargs["garment_pngs"]) == 1
        assert decode_image(kwargs["garment_pngs"][0]).equals(decode_image(garment_png))
        assert kwargs["instruction"] == "Put on the shirt"

    @pytest.mark.asyncio
    async def test_cutout_art_is_sent_to_the_service(self, pipeline, red_png, opaque_garment_png, garment_png):
        pipeline.background_client.config.api_token = "test-token"
        pipeline.background_client.remove_background = AsyncMock(return_value=garment_png)

        await pipeline.run(request_for(red_png, opaque_garment_png, remove_garment_background=True))

        sent = pipeline.edit_client.edit.call_args.kwargs["garment_pngs"][0]
        assert decode_image(sent).equals(decode_image(garment_png))
        assert not decode_image(sent).equals(decode_image(opaque_garment_png))

    @pytest.mark.asyncio
    async def test_non_json_edit_response_falls_back(self, red_png, garment_png):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>502 Bad Gateway</html>")

        config = external_config()
        edit_client = ImageEditClient(config.edit_service, transport=httpx.MockTransport(handler))
        pipeline = FittingPipeline(config, edit_client=edit_client)

        outcome = await pipeline.run(request_for(red_png, garment_png))

        assert outcome.session.status == "completed"
        assert outcome.session.path == "heuristic"
        assert "non-JSON" in outcome.session.fallback_reason
        assert outcome.image is not None

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_heuristic(self, red_png, garment_png):
        pipeline = FittingPipeline(external_config(timeout=0.05))

        async def slow_edit(**kwargs):
            await asyncio.sleep(1)
            return BLUE_EDIT

        pipeline.edit_client.edit = slow_edit

        outcome = await pipeline.run(request_for(red_png, garment_png))

        session = outcome.session
        assert session.status == "completed"
        assert session.path == "heuristic"
        assert "did not answer" in session.fallback_reason
        assert FittingState.AWAITING_EXTERNAL_EDIT in session.states
        assert session.states[-2:] == [FittingState.HEURISTIC_PLACEMENT, FittingState.DONE]
        assert outcome.image is not None

    @pytest.mark.asyncio
    async def test_service_error_without_fallback_fails(self, pipeline, red_png, garment_png):
        pipeline.edit_client.edit = AsyncMock(side_effect=ExternalServiceError("boom", stage="external_edit", status_code=500))

        with pytest.raises(ExternalServiceError):
            await pipeline.run(request_for(red_png, garment_png, allow_fallback=False))

    @pytest.mark.asyncio
    async def test_undecodable_edit_falls_back(self, pipeline, red_png, garment_png):
        pipeline.edit_client.edit = AsyncMock(return_value=b"not an image")

        outcome = await pipeline.run(request_for(red_png, garment_png))

        assert outcome.session.path == "heuristic"
        assert "undecodable" in outcome.session.fallback_reason

    @pytest.mark.asyncio
    async def test_alpha_mask_failure_uses_box(self, pipeline, red_png, garment_png):
        outcome = await pipeline.run(request_for(red_png, garment_png, mask_cutout=red_png))

        assert outcome.session.path == "external"
        assert pixel(outcome.image, 512, 720) == (0, 0, 255, 255)

    @pytest.mark.asyncio
    async def test_alpha_mask_failure_without_fallback_raises(self, pipeline, red_png, garment_png):
        with pytest.raises(MaskDerivationFailed):
            await pipeline.run(request_for(red_png, garment_png, mask_cutout=red_png, allow_fallback=False))

    @pytest.mark.asyncio
    async def test_use_external_edit_false_skips_service(self, pipeline, red_png, garment_png):
        outcome = await pipeline.run(request_for(red_png, garment_png, use_external_edit=False))

        assert outcome.session.path == "heuristic"
        pipeline.edit_client.edit.assert_not_called()


class TestHeuristicPath:
    """Tests for heuristic placement runs."""

    @pytest.fixture
    def pipeline(self):
        return FittingPipeline(heuristic_config())

    @pytest.mark.asyncio
    async def test_no_skin_uses_default_region(self, pipeline, no_skin_png, garment_png):
        outcome = await pipeline.run(request_for(no_skin_png, garment_png))

        session = outcome.session
        assert session.status == "completed"
        assert session.path == "heuristic"
        assert session.regions[0].is_default is True
        placement = session.placements[0]
        assert placement.y >= 1536 * 0.40
        assert placement.right <= 1024 and placement.bottom <= 1536

    @pytest.mark.asyncio
    async def test_several_people_need_selection(self, pipeline, two_people_png, garment_png):
        outcome = await pipeline.run(request_for(two_people_png, garment_png))

        assert outcome.image is None
        assert outcome.session.needs_selection is True
        assert len(outcome.session.regions) == 2

    @pytest.mark.asyncio
    async def test_region_index_resolves_selection(self, pipeline, two_people_png, garment_png):
        outcome = await pipeline.run(request_for(two_people_png, garment_png, region_index=1))

        assert outcome.session.status == "completed"
        assert outcome.session.selected_region == 1
        assert outcome.session.placements[0].center.x > 512

    @pytest.mark.asyncio
    async def test_calibration_skips_detection(self, pipeline, two_people_png, garment_png):
        calibration = ShoulderCalibration(
            left_shoulder=Point(x=400, y=600),
            right_shoulder=Point(x=600, y=600),
        )

        outcome = await pipeline.run(request_for(two_people_png, garment_png, calibration=calibration))

        assert outcome.session.status == "completed"
        assert outcome.session.regions == []
        assert outcome.session.placements[0].y >= 600

    @pytest.mark.asyncio
    async def test_bad_calibration_fails(self, pipeline, red_png, garment_png):
        calibration = ShoulderCalibration(
            left_shoulder=Point(x=500, y=600),
            right_shoulder=Point(x=500, y=600),
        )

        with pytest.raises(PlacementError):
            await pipeline.run(request_for(red_png, garment_png, calibration=calibration))

    @pytest.mark.asyncio
    async def test_invalid_photo_fails(self, pipeline, garment_png):
        with pytest.raises(InvalidImage):
            await pipeline.run(request_for(b"garbage", garment_png))

    @pytest.mark.asyncio
    async def test_face_rows_match_the_photo(self, pipeline, no_skin_png, garment_png):
        outcome = await pipeline.run(request_for(no_skin_png, garment_png))

        photo = decode_image(no_skin_png)
        result = decode_image(outcome.image)
        top = int(1536 * 0.40)
        assert (result.pixels[:top] == photo.pixels[:top]).all()

    @pytest.mark.asyncio
    async def test_background_removal_for_opaque_garments(self, pipeline, no_skin_png, opaque_garment_png, garment_png):
        pipeline.background_client.config.api_token = "test-token"
        pipeline.background_client.remove_background = AsyncMock(return_value=garment_png)

        outcome = await pipeline.run(request_for(no_skin_png, opaque_garment_png, remove_garment_background=True))

        pipeline.background_client.remove_background.assert_awaited_once_with(opaque_garment_png)
        assert outcome.session.status == "completed"

    @pytest.mark.asyncio
    async def test_background_removal_failure_keeps_original_art(self, pipeline, no_skin_png, opaque_garment_png):
        pipeline.background_client.config.api_token = "test-token"
        pipeline.background_client.remove_background = AsyncMock(side_effect=ExternalServiceError("down"))

        outcome = await pipeline.run(request_for(no_skin_png, opaque_garment_png, remove_garment_background=True))

        assert outcome.session.status == "completed"
        assert len(outcome.session.placements) == 1

    @pytest.mark.asyncio
    async def test_non_json_background_removal_keeps_original_art(self, no_skin_png, opaque_garment_png):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>502 Bad Gateway</html>")

        config = heuristic_config()
        config.background_removal.api_token = "test-token"
        background_client = BackgroundRemovalClient(config.background_removal, transport=httpx.MockTransport(handler))
        pipeline = FittingPipeline(config, background_client=background_client)

        outcome = await pipeline.run(request_for(no_skin_png, opaque_garment_png, remove_garment_background=True))

        assert outcome.session.status == "completed"
        assert len(outcome.session.placements) == 1
        assert outcome.image is not None


class TestIdempotency:
    """Tests for idempotent re-runs."""

    @pytest.mark.asyncio
    async def test_cached_outcome_skips_external_call(self, red_png, garment_png):
        pipeline = FittingPipeline(external_config())
        pipeline.edit_client.edit = AsyncMock(return_value=BLUE_EDIT)
        cache = IdempotencyCache()
        request = request_for(red_png, garment_png, idempotency_key="order-42")

        first = await pipeline.run(request, cache=cache)
        second = await pipeline.run(request, cache=cache)

        assert pipeline.edit_client.edit.await_count == 1
        assert second.session.session_id == first.session.session_id
        assert second.image == first.image

    @pytest.mark.asyncio
    async def test_cache_hit_is_isolated_from_caller_changes(self, red_png, garment_png):
        pipeline = FittingPipeline(external_config())
        pipeline.edit_client.edit = AsyncMock(return_value=BLUE_EDIT)
        cache = IdempotencyCache()
        request = request_for(red_png, garment_png, idempotency_key="order-43")

        await pipeline.run(request, cache=cache)
        hit = await pipeline.run(request, cache=cache)
        hit.session.status = "tampered"
        hit.session.states.append(FittingState.FAILED)

        again = await pipeline.run(request, cache=cache)
        assert again.session.status == "completed"
        assert again.session.states[-1] == FittingState.DONE

    @pytest.mark.asyncio
    async def test_pending_selection_is_not_cached(self, two_people_png, garment_png):
        pipeline = FittingPipeline(heuristic_config())
        cache = IdempotencyCache()

        await pipeline.run(request_for(two_people_png, garment_png, idempotency_key="k"), cache=cache)

        assert "k" not in cache

    def test_cache_evicts_least_recently_used(self):
        cache = IdempotencyCache(max_size=2)
        outcomes = {key: FittingOutcome.model_construct(session=None, image=key.encode()) for key in "abc"}

        cache.put("a", outcomes["a"])
        cache.put("b", outcomes["b"])
        cache.get("a")
        cache.put("c", outcomes["c"])

        assert "a" in cache and "c" in cache
        assert "b" not in cache
        assert len(cache) == 2

    def test_key_depends_on_photo_and_garments(self, red_png, garment_png):
        key = make_idempotency_key(red_png, ["g1", "g2"])

        assert key == make_idempotency_key(red_png, ["g1", "g2"])
        assert key != make_idempotency_key(red_png, ["g1"])
        assert key != make_idempotency_key(garment_png, ["g1", "g2"])
        assert len(key) == 64
