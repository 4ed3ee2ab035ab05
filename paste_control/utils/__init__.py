"""Shared utilities: atomic file writes, YAML loading, logging setup."""

from paste_control.utils.fs import (
    atomic_write_bytes,
    atomic_write_text,
    ensure_dir,
    load_yaml,
)
from paste_control.utils.logging_config import (
    install_excepthook,
    pop_context,
    push_context,
    setup_logging,
)

__all__ = [
    "atomic_write_bytes",
    "atomic_write_text",
    "ensure_dir",
    "load_yaml",
    "install_excepthook",
    "pop_context",
    "push_context",
    "setup_logging",
]
