"""FastAPI server for Closet Fit.

Receives requests from the wardrobe front end with:
- person_photo: Base64-encoded photo of the user
- garments: catalog garments with their (background-removed) art
- options: region choice, shoulder calibration, mask cutout, AI toggle
"""

import base64
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware

from closet_fit import __version__
from closet_fit.config import load_config
from closet_fit.models import FittingState, HumanRegion, ShoulderCalibration
from closet_fit.pipeline import FittingPipeline, FittingRequest, GarmentUpload, IdempotencyCache
from closet_fit.utils import data_url_to_bytes, encode_data_url

settings = load_config()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with timing information."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        logger.info(f"Request: {request.method} {request.url.path}")

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        logger.info(f"Response: {request.method} {request.url.path} - {response.status_code} - {process_time:.3f}s")
        return response


app = FastAPI(
    title="Closet Fit API",
    description="Virtual fitting of wardrobe garments onto a person photo",
    version=__version__,
)

# Enable CORS for the wardrobe front end
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


class GarmentPayload(BaseModel):
    """One garment in a try-on request."""
    id: str
    category: str | None = None  # Free-text catalog category
    image: str  # Base64 data URL


class TryOnRequest(BaseModel):
    """Request body for a fitting."""
    person_photo: str  # Base64 data URL
    garments: list[GarmentPayload] = Field(default_factory=list)
    region_index: int | None = None
    calibration: ShoulderCalibration | None = None
    mask_cutout: str | None = None  # Base64 data URL of a background-removed person
    use_ai: bool = True
    allow_fallback: bool = True
    idempotency_key: str | None = None
    instruction: str | None = None


class TryOnResponse(BaseModel):
    """Response with the fitted image, or the choice the caller has to make."""
    success: bool
    image_base64: str | None = None
    error: str | None = None
    session_id: str | None = None
    path: str | None = None
    needs_selection: bool = False
    regions: list[HumanRegion] = Field(default_factory=list)
    fallback_reason: str | None = None
    states: list[FittingState] = Field(default_factory=list)


class RegionsRequest(BaseModel):
    photo: str  # Base64 data URL


class RegionsResponse(BaseModel):
    success: bool
    regions: list[HumanRegion] = Field(default_factory=list)
    error: str | None = None


class MaskRequest(BaseModel):
    cutout: str | None = None  # Omit for the garment-box mask


class MaskResponse(BaseModel):
    success: bool
    mask: str | None = None  # PNG data URL, alpha carries the mask
    editable_fraction: float | None = None
    error: str | None = None


class RemoveBackgroundRequest(BaseModel):
    image: str  # Base64 data URL


class RemoveBackgroundResponse(BaseModel):
    success: bool
    image_base64: str | None = None
    error: str | None = None


# Initialize pipeline (will be done on first request)
_pipeline: FittingPipeline | None = None
_cache = IdempotencyCache(settings.idempotency_cache_size)


def get_pipeline() -> FittingPipeline:
    """Get or create the pipeline instance."""
    global _pipeline
    if _pipeline is None:
        _pipeline = FittingPipeline(settings)
    return _pipeline


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Closet Fit API", "version": __version__}


@app.get("/health")
async def health():
    """Detailed health check."""
    pipeline = get_pipeline()
    configured = pipeline.edit_client.is_configured
    reachable = configured and await pipeline.check_connection()

    return {
        "status": "ok" if reachable else "degraded",
        "edit_service": "connected" if reachable else ("unreachable" if configured else "not configured"),
        "background_removal": "configured" if pipeline.background_client.is_configured else "not configured",
    }


@app.post("/api/tryon", response_model=TryOnResponse)
async def fit_garments(request: TryOnRequest):
    """Dress the person photo with the requested garments.

    Args:
        request: Person photo (base64), garments and fitting options

    Returns:
        Base64-encoded PNG of the result, or the candidate regions to choose from
    """
    try:
        pipeline = get_pipeline()

        fitting_request = FittingRequest(
            person_image=data_url_to_bytes(request.person_photo),
            garments=[
                GarmentUpload(
                    item={"id": garment.id, "category": garment.category},
                    image=data_url_to_bytes(garment.image),
                )
                for garment in request.garments
            ],
            region_index=request.region_index,
            calibration=request.calibration,
            mask_cutout=data_url_to_bytes(request.mask_cutout) if request.mask_cutout else None,
            use_external_edit=request.use_ai,
            allow_fallback=request.allow_fallback,
            idempotency_key=request.idempotency_key,
            instruction=request.instruction,
        )
        outcome = await pipeline.run(fitting_request, cache=_cache)
        session = outcome.session

        return TryOnResponse(
            success=outcome.image is not None,
            image_base64=base64.b64encode(outcome.image).decode("utf-8") if outcome.image else None,
            error=session.final_message if session.needs_selection else None,
            session_id=session.session_id,
            path=session.path,
            needs_selection=session.needs_selection,
            regions=session.regions,
            fallback_reason=session.fallback_reason,
            states=session.states,
        )

    except Exception as e:
        logger.error(f"Try-on failed: {e}")
        return TryOnResponse(
            success=False,
            error=str(e),
        )


@app.post("/api/regions", response_model=RegionsResponse)
async def detect_regions(request: RegionsRequest):
    """Candidate people on a photo, for the selection and calibration UI."""
    try:
        regions = get_pipeline().detect_regions(data_url_to_bytes(request.photo))
        return RegionsResponse(success=True, regions=regions)
    except Exception as e:
        return RegionsResponse(success=False, error=str(e))


@app.post("/api/mask", response_model=MaskResponse)
async def preview_mask(request: MaskRequest):
    """Build the edit mask on the canonical canvas."""
    try:
        cutout = data_url_to_bytes(request.cutout) if request.cutout else None
        mask = get_pipeline().build_mask(cutout)
        return MaskResponse(
            success=True,
            mask=encode_data_url(mask.to_image()),
            editable_fraction=mask.editable_fraction,
        )
    except Exception as e:
        return MaskResponse(success=False, error=str(e))


@app.post("/api/remove-background", response_model=RemoveBackgroundResponse)
async def remove_background(request: RemoveBackgroundRequest):
    """Cut a garment out of its photo."""
    try:
        cutout = await get_pipeline().remove_background(data_url_to_bytes(request.image))
        return RemoveBackgroundResponse(success=True, image_base64=base64.b64encode(cutout).decode("utf-8"))
    except Exception as e:
        return RemoveBackgroundResponse(success=False, error=str(e))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
