"""Machine configuration loading and validation."""

from paste_control.configs.loader import (
    ConfigError,
    ConnectionConfig,
    DispenseConfig,
    MachineConfig,
    MotionConfig,
    VisionConfig,
    load_config,
)

__all__ = [
    "ConfigError",
    "ConnectionConfig",
    "DispenseConfig",
    "MachineConfig",
    "MotionConfig",
    "VisionConfig",
    "load_config",
]
