"""Configuration management for the fitting pipeline."""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class CanvasConfig(BaseModel):
    """Canonical canvas every buffer is normalized to."""
    width: int = Field(default=1024, gt=0)
    height: int = Field(default=1536, gt=0)

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)


class MaskParams(BaseModel):
    """Mask construction settings."""
    # Editable garment box, as fractions of the canvas
    box_x: float = Field(default=0.18, ge=0.0, le=1.0)
    box_y: float = Field(default=0.28, ge=0.0, le=1.0)
    box_width: float = Field(default=0.64, gt=0.0, le=1.0)
    box_height: float = Field(default=0.38, gt=0.0, le=1.0)

    threshold: int = Field(default=10, ge=0, le=254)  # ~4% of 255
    feather_radius: int = Field(default=3, ge=0, le=16)
    grow: int = Field(default=0, ge=0, le=32)


class DetectorConfig(BaseModel):
    """Skin-tone clustering settings."""
    grid_step: int = Field(default=4, ge=1)
    min_cluster_size: int = Field(default=100, ge=1)  # samples on the coarse grid
    merge_distance_factor: float = 1.5
    min_alpha: int = 128

    r_range: tuple[int, int] = (95, 255)
    g_range: tuple[int, int] = (40, 200)
    b_range: tuple[int, int] = (20, 180)


class PoseConfig(BaseModel):
    """Anthropometric ratios. Empirical defaults, not measurements."""
    head_ratio: float = 0.2
    shoulder_offset_ratio: float = 0.1
    hip_ratio: float = 0.55
    knee_ratio: float = 0.75
    shoulder_spread: float = 0.15
    hip_spread: float = 0.12
    knee_spread: float = 0.10

    # Default region when nothing is detected (fractions of the canvas)
    default_width: float = 0.4
    default_height: float = 0.7
    default_shoulder_y: float = 0.40

    # Body height / body width used to extrapolate from a manual shoulder span
    calibration_height_ratio: float = 2.6


class PlacementConfig(BaseModel):
    """Heuristic garment compositing settings."""
    edge_softening: int = Field(default=1, ge=0, le=8)
    shadow_offset: int = Field(default=2, ge=0)
    shadow_opacity: float = Field(default=0.15, ge=0.0, le=1.0)
    min_rotation: float = 0.5  # degrees; smaller tilts are drawn straight
    max_workers: int = Field(default=1, ge=1)


class GuardConfig(BaseModel):
    """Identity-preserving composite settings."""
    threshold: int = Field(default=10, ge=0, le=254)
    feather_radius: int = Field(default=4, ge=0, le=8)


class EditServiceConfig(BaseModel):
    """External image-edit service (OpenAI images/edits contract)."""
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-image-1"
    size: str = "auto"
    input_fidelity: str = "high"
    timeout_seconds: float = 60.0
    instruction: str = (
        "Only edit inside the masked region. Replace the garment with the reference clothing. "
        "Do not change face, body, or background outside the mask. "
        "Keep the clothing design/logo/colors."
    )


class BackgroundRemovalConfig(BaseModel):
    """External background-removal service (Replicate predictions contract)."""
    api_token: str | None = None
    base_url: str = "https://api.replicate.com/v1"
    version: str = "fb8af171cfa1616ddcf1242c093f9c46bcada5ad4cf6f2fbe8b81b330ec5c003"  # cjwbw/rembg
    poll_interval: float = 1.0
    timeout_seconds: float = 60.0


class FittingConfig(BaseSettings):
    """Main pipeline configuration."""

    # Sub-configs
    canvas: CanvasConfig = Field(default_factory=CanvasConfig)
    mask: MaskParams = Field(default_factory=MaskParams)
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    pose: PoseConfig = Field(default_factory=PoseConfig)
    placement: PlacementConfig = Field(default_factory=PlacementConfig)
    guard: GuardConfig = Field(default_factory=GuardConfig)
    edit_service: EditServiceConfig = Field(default_factory=EditServiceConfig)
    background_removal: BackgroundRemovalConfig = Field(default_factory=BackgroundRemovalConfig)

    log_level: str = "INFO"
    idempotency_cache_size: int = 64

    class Config:
        env_file = ".env"
        env_prefix = "CLOSET_FIT_"
        env_nested_delimiter = "__"
        extra = "ignore"


def load_config() -> FittingConfig:
    """Load configuration from environment and defaults."""
    return FittingConfig()
