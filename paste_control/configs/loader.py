"""Configuration loader for the paste dispenser.

Loads and validates ``machine.yaml`` into typed, frozen dataclasses.
Serial settings, travel heights, dispense amounts and vision parameters
all come from the config -- nothing machine-specific is hardcoded in the
engine.

Feed rates are stored in **mm/s** throughout Python.  Conversion to the
G-code ``F`` parameter (mm/min) happens only in ``hardware.macros``.

Usage::

    from paste_control.configs.loader import load_config
    cfg = load_config()                       # default path
    cfg = load_config("/custom/machine.yaml") # explicit path
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from paste_control.utils.fs import load_yaml

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


# ---------------------------------------------------------------------------
# Dataclasses -- mirror the YAML structure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConnectionConfig:
    """Serial port settings and firmware handshake."""

    port: str
    baudrate: int
    read_timeout_s: float
    ack_timeout_s: float
    busy_extensions: int
    position_query: str
    boot_commands: tuple[str, ...]
    lights_on_connect: bool = True


@dataclass(frozen=True)
class MotionConfig:
    """Travel heights and fixed positions (mm)."""

    safe_z_mm: float
    default_z_mm: float
    approach_clearance_mm: float
    travel_feed_mm_s: float
    park_position_mm: tuple[float, float]
    datum_position_mm: tuple[float, float]
    jog_increments_mm: tuple[float, ...]


@dataclass(frozen=True)
class AdaptiveDispenseConfig:
    """Area-proportional dispense amount.

    ``amount = dispense_degrees * area / reference_area_mm2`` clamped to
    ``[min_degrees, max_degrees]``.
    """

    enabled: bool
    reference_area_mm2: float
    min_degrees: float
    max_degrees: float


@dataclass(frozen=True)
class DispenseConfig:
    """B-axis dispense settings (degrees of rotation)."""

    dispense_degrees: float
    retraction_degrees: float
    dwell_ms: int
    retract_and_raise_degrees: float
    pressure_amount_degrees: float
    slow_extrude_distance: float
    slow_extrude_feed_mm_s: float
    adaptive: AdaptiveDispenseConfig


@dataclass(frozen=True)
class HoughConfig:
    """``cv2.HoughCircles`` parameters plus the candidate scoring weights."""

    blur_kernel: int
    blur_sigma: float
    dp: float
    min_dist_divisor: int
    param1: float
    param2: float
    min_radius: int
    max_radius: int
    ideal_radius: float
    center_weight: float


@dataclass(frozen=True)
class VisionConfig:
    """Camera scale and centering loop settings."""

    mm_per_pixel: float
    invert_y: bool
    centering_rounds: int
    settle_s: float
    hough: HoughConfig


@dataclass(frozen=True)
class TipOffsetConfig:
    """Nominal camera -> tip offset used before tip calibration."""

    nominal_offset_mm: tuple[float, float]
    tip_z_mm: float


@dataclass(frozen=True)
class LoggingConfig:
    level: str
    file: str | None
    json: bool = False


@dataclass(frozen=True)
class MachineConfig:
    """Top-level machine configuration."""

    connection: ConnectionConfig
    motion: MotionConfig
    dispense: DispenseConfig
    vision: VisionConfig
    tip_offset: TipOffsetConfig
    logging: LoggingConfig


# ---------------------------------------------------------------------------
# Section parsers
# ---------------------------------------------------------------------------


def _pair(raw: Any, name: str) -> tuple[float, float]:
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        raise ConfigError(f"{name} must be a [x, y] pair, got {raw!r}")
    return (float(raw[0]), float(raw[1]))


def _parse_connection(data: dict[str, Any]) -> ConnectionConfig:
    return ConnectionConfig(
        port=str(data["port"]),
        baudrate=int(data.get("baudrate", 115200)),
        read_timeout_s=float(data.get("read_timeout_s", 0.1)),
        ack_timeout_s=float(data.get("ack_timeout_s", 5.0)),
        busy_extensions=int(data.get("busy_extensions", 1)),
        position_query=str(data.get("position_query", "M114")),
        boot_commands=tuple(str(c) for c in data.get("boot_commands", [])),
        lights_on_connect=bool(data.get("lights_on_connect", True)),
    )


def _parse_motion(data: dict[str, Any]) -> MotionConfig:
    return MotionConfig(
        safe_z_mm=float(data["safe_z_mm"]),
        default_z_mm=float(data.get("default_z_mm", data["safe_z_mm"])),
        approach_clearance_mm=float(data.get("approach_clearance_mm", 0.0)),
        travel_feed_mm_s=float(data["travel_feed_mm_s"]),
        park_position_mm=_pair(
            data.get("park_position_mm", [0.0, 0.0]), "motion.park_position_mm",
        ),
        datum_position_mm=_pair(
            data["datum_position_mm"], "motion.datum_position_mm",
        ),
        jog_increments_mm=tuple(
            float(x) for x in data.get("jog_increments_mm", [0.1, 1.0, 10.0])
        ),
    )


def _parse_dispense(data: dict[str, Any]) -> DispenseConfig:
    ad = data.get("adaptive") or {}
    adaptive = AdaptiveDispenseConfig(
        enabled=bool(ad.get("enabled", False)),
        reference_area_mm2=float(ad.get("reference_area_mm2", 1.0)),
        min_degrees=float(ad.get("min_degrees", 0.0)),
        max_degrees=float(ad.get("max_degrees", 360.0)),
    )
    return DispenseConfig(
        dispense_degrees=float(data["dispense_degrees"]),
        retraction_degrees=float(data["retraction_degrees"]),
        dwell_ms=int(data.get("dwell_ms", 100)),
        retract_and_raise_degrees=float(
            data.get("retract_and_raise_degrees", 10.0)
        ),
        pressure_amount_degrees=float(data.get("pressure_amount_degrees", 50.0)),
        slow_extrude_distance=float(data.get("slow_extrude_distance", 20000)),
        slow_extrude_feed_mm_s=float(
            data.get("slow_extrude_feed_mm_s", 2000.0 / 60.0)
        ),
        adaptive=adaptive,
    )


def _parse_hough(data: dict[str, Any]) -> HoughConfig:
    return HoughConfig(
        blur_kernel=int(data.get("blur_kernel", 9)),
        blur_sigma=float(data.get("blur_sigma", 2.0)),
        dp=float(data.get("dp", 1.0)),
        min_dist_divisor=int(data.get("min_dist_divisor", 8)),
        param1=float(data.get("param1", 50.0)),
        param2=float(data.get("param2", 30.0)),
        min_radius=int(data.get("min_radius", 1)),
        max_radius=int(data.get("max_radius", 50)),
        ideal_radius=float(data.get("ideal_radius", 20.0)),
        center_weight=float(data.get("center_weight", 0.7)),
    )


def _parse_vision(data: dict[str, Any]) -> VisionConfig:
    return VisionConfig(
        mm_per_pixel=float(data["mm_per_pixel"]),
        invert_y=bool(data.get("invert_y", True)),
        centering_rounds=int(data.get("centering_rounds", 2)),
        settle_s=float(data.get("settle_s", 0.5)),
        hough=_parse_hough(data.get("hough") or {}),
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate_config(cfg: MachineConfig) -> None:
    """Validate cross-field consistency.

    Raises
    ------
    ConfigError
        On any invalid combination.
    """
    # -- Connection values positive -----------------------------------------
    c = cfg.connection
    if c.baudrate <= 0:
        raise ConfigError(f"baudrate must be > 0, got {c.baudrate}")
    if c.ack_timeout_s <= 0:
        raise ConfigError(f"ack_timeout_s must be > 0, got {c.ack_timeout_s}")
    if c.read_timeout_s <= 0 or c.read_timeout_s > c.ack_timeout_s:
        raise ConfigError(
            f"read_timeout_s must be in (0, ack_timeout_s], "
            f"got {c.read_timeout_s}"
        )
    if c.busy_extensions < 0:
        raise ConfigError(
            f"busy_extensions must be >= 0, got {c.busy_extensions}"
        )

    # -- Motion -------------------------------------------------------------
    m = cfg.motion
    if m.travel_feed_mm_s <= 0:
        raise ConfigError(
            f"travel_feed_mm_s must be > 0, got {m.travel_feed_mm_s}"
        )
    if m.approach_clearance_mm < 0:
        raise ConfigError(
            f"approach_clearance_mm must be >= 0, got {m.approach_clearance_mm}"
        )
    for inc in m.jog_increments_mm:
        if inc <= 0:
            raise ConfigError(f"Jog increment must be positive, got {inc}")

    # -- Dispense -----------------------------------------------------------
    d = cfg.dispense
    if d.dispense_degrees <= 0:
        raise ConfigError(
            f"dispense_degrees must be > 0, got {d.dispense_degrees}"
        )
    if d.retraction_degrees < 0:
        raise ConfigError(
            f"retraction_degrees must be >= 0, got {d.retraction_degrees}"
        )
    if d.dwell_ms < 0:
        raise ConfigError(f"dwell_ms must be >= 0, got {d.dwell_ms}")
    a = d.adaptive
    if a.reference_area_mm2 <= 0:
        raise ConfigError(
            f"adaptive.reference_area_mm2 must be > 0, "
            f"got {a.reference_area_mm2}"
        )
    if not (0 <= a.min_degrees <= a.max_degrees):
        raise ConfigError(
            f"adaptive bounds must satisfy 0 <= min <= max: "
            f"{a.min_degrees} <= {a.max_degrees}"
        )

    # -- Vision -------------------------------------------------------------
    v = cfg.vision
    if v.mm_per_pixel <= 0:
        raise ConfigError(f"mm_per_pixel must be > 0, got {v.mm_per_pixel}")
    if v.centering_rounds < 1:
        raise ConfigError(
            f"centering_rounds must be >= 1, got {v.centering_rounds}"
        )
    h = v.hough
    if h.blur_kernel < 1 or h.blur_kernel % 2 == 0:
        raise ConfigError(
            f"hough.blur_kernel must be a positive odd number, "
            f"got {h.blur_kernel}"
        )
    if not (0 <= h.min_radius <= h.max_radius):
        raise ConfigError(
            f"hough radii must satisfy 0 <= min <= max: "
            f"{h.min_radius} <= {h.max_radius}"
        )
    if not (0.0 <= h.center_weight <= 1.0):
        raise ConfigError(
            f"hough.center_weight must be in [0, 1], got {h.center_weight}"
        )

    # -- Logging ------------------------------------------------------------
    if cfg.logging.level.upper() not in (
        "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL",
    ):
        raise ConfigError(f"Unknown logging level '{cfg.logging.level}'")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(path: str | Path | None = None) -> MachineConfig:
    """Load and validate machine configuration from YAML.

    Parameters
    ----------
    path : str | Path | None
        Path to ``machine.yaml``.  ``None`` loads the default shipped
        alongside this module.

    Returns
    -------
    MachineConfig
        Fully validated, frozen configuration object.

    Raises
    ------
    ConfigError
        If any field is missing or fails validation.
    FileNotFoundError
        If *path* does not exist.
    """
    if path is None:
        path = Path(__file__).parent / "machine.yaml"
    else:
        path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    logger.info("Loading configuration from %s", path)

    data: dict[str, Any] = load_yaml(path)
    if data is None:
        raise ConfigError(f"Empty configuration file: {path}")

    try:
        to = data.get("tip_offset") or {}
        lg = data.get("logging") or {}
        config = MachineConfig(
            connection=_parse_connection(data["connection"]),
            motion=_parse_motion(data["motion"]),
            dispense=_parse_dispense(data["dispense"]),
            vision=_parse_vision(data["vision"]),
            tip_offset=TipOffsetConfig(
                nominal_offset_mm=_pair(
                    to.get("nominal_offset_mm", [0.0, 0.0]),
                    "tip_offset.nominal_offset_mm",
                ),
                tip_z_mm=float(to.get("tip_z_mm", data["motion"]["safe_z_mm"])),
            ),
            logging=LoggingConfig(
                level=str(lg.get("level", "INFO")),
                file=lg.get("file"),
                json=bool(lg.get("json", False)),
            ),
        )

        _validate_config(config)
        logger.info("Configuration loaded successfully")
        return config

    except KeyError as exc:
        raise ConfigError(
            f"Missing required configuration key: {exc}"
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ConfigError(
            f"Invalid configuration value: {exc}"
        ) from exc
