import os
from dataclasses import dataclass, asdict, replace

HERE = os.path.dirname(os.path.abspath(__file__))


def env_bool(name, default="0"):
    return os.environ.get(name, default).strip().lower() in ("1","true","yes","on","y")

W_CAP = int(os.environ.get("CAP_W", "1280"))
H_CAP = int(os.environ.get("CAP_H", "720"))
CAM_INDEX = int(os.environ.get("CAM_INDEX", "0"))
H_MIRROR = env_bool("H_MIRROR", "1")
JPEG_QUALITY = int(os.environ.get("JPEG_QUALITY", "80"))
PORT = int(os.environ.get("PORT", "5000"))
SHOW_DEBUG = env_bool("SHOW_DEBUG", "0")

JEWELRY_DIR = os.environ.get("JEWELRY_DIR", os.path.join(HERE, "jewelry"))
WATERMARK_PATH = os.environ.get("WATERMARK_PATH", os.path.join(HERE, "logo_watermark.png"))

# Segmentation runs on its own cadence, independent of the render frame rate
SEG_ENABLED = env_bool("SEG_ENABLED", "1")
SEG_INTERVAL = float(os.environ.get("SEG_INTERVAL_MS", "300")) / 1000.0
SEG_THRESHOLD = float(os.environ.get("SEG_THRESHOLD", "0.7"))

# Try-all capture: the selection must settle through the smoothing filters
TRY_ALL_SETTLE = float(os.environ.get("TRY_ALL_SETTLE_S", "0.8"))
TRY_ALL_STEP = float(os.environ.get("TRY_ALL_STEP_S", "2.0"))

# Deployed variants differ only in where the necklace hangs
VARIANT_NECK_Y_OFFSET = {
    "classic": 0.95,
    "studio": 1.15,
}
TRYON_VARIANT = os.environ.get("TRYON_VARIANT", "classic").strip().lower()
if TRYON_VARIANT not in VARIANT_NECK_Y_OFFSET:
    print(f"[WARNING] Unknown TRYON_VARIANT '{TRYON_VARIANT}', falling back to 'classic'")
    TRYON_VARIANT = "classic"

SMOOTHING_MAX = 0.99


def _clamp_smoothing(v):
    return min(SMOOTHING_MAX, max(0.0, float(v)))


@dataclass(frozen=True)
class TuningParameters:
    """Live-adjustable knobs for jewelry size, neck placement and anchor smoothing."""

    ear_size_factor: float = 0.24
    neck_y_offset_factor: float = VARIANT_NECK_Y_OFFSET["classic"]
    neck_scale_multiplier: float = 1.15
    position_smoothing: float = 0.88
    ear_distance_smoothing: float = 0.90

    def __post_init__(self):
        object.__setattr__(self, "position_smoothing", _clamp_smoothing(self.position_smoothing))
        object.__setattr__(self, "ear_distance_smoothing", _clamp_smoothing(self.ear_distance_smoothing))

    @classmethod
    def from_env(cls, variant=None):
        variant = variant or TRYON_VARIANT
        neck_default = VARIANT_NECK_Y_OFFSET.get(variant, VARIANT_NECK_Y_OFFSET["classic"])
        return cls(
            ear_size_factor=float(os.environ.get("EAR_SIZE_FACTOR", "0.24")),
            neck_y_offset_factor=float(os.environ.get("NECK_Y_OFFSET", str(neck_default))),
            neck_scale_multiplier=float(os.environ.get("NECK_SCALE", "1.15")),
            position_smoothing=float(os.environ.get("POS_SMOOTH", "0.88")),
            ear_distance_smoothing=float(os.environ.get("EAR_DIST_SMOOTH", "0.90")),
        )

    def updated(self, **values):
        """Return a copy with the given fields replaced; unknown names raise KeyError."""
        known = asdict(self)
        for k in values:
            if k not in known:
                raise KeyError(k)
        return replace(self, **{k: float(v) for k, v in values.items()})

    def as_dict(self):
        return asdict(self)
