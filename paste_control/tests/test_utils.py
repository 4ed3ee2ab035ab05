"""Tests for filesystem and logging helpers."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from paste_control.utils.fs import (
    atomic_write_text,
    ensure_dir,
    load_yaml,
)
from paste_control.utils.logging_config import (
    ContextFormatter,
    pop_context,
    push_context,
    setup_logging,
)


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


class TestFs:
    def test_ensure_dir_creates_parents(self, tmp_path: Path) -> None:
        d = ensure_dir(tmp_path / "a" / "b")
        assert d.is_dir()

    def test_atomic_write_replaces(self, tmp_path: Path) -> None:
        path = tmp_path / "job.json"
        atomic_write_text(path, "old")
        atomic_write_text(path, "new")
        assert path.read_text() == "new"
        assert list(tmp_path.iterdir()) == [path]

    def test_load_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "cfg.yaml"
        path.write_text("motion:\n  safe_z_mm: 31.5\n  park_position_mm: [0.0, 0.0]\n")
        assert load_yaml(path) == {"motion": {"safe_z_mm": 31.5, "park_position_mm": [0.0, 0.0]}}

    def test_load_missing(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_yaml(tmp_path / "missing.yaml")


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_context():
    pop_context()
    yield
    pop_context()


class TestLogging:
    def test_context_push_pop(self, clean_context) -> None:
        push_context(app="run_job", job="board.json")
        pop_context(["job"])
        record = logging.LogRecord(
            "paste_control.test", logging.INFO, __file__, 1, "x", (), None,
        )
        out = json.loads(ContextFormatter("json").format(record))
        assert out["app"] == "run_job"
        assert "job" not in out

    def test_json_format_includes_context(self, clean_context) -> None:
        push_context(job="board.json")
        record = logging.LogRecord(
            "paste_control.test", logging.INFO, __file__, 1, "Placement %d/%d", (3, 40), None,
        )
        out = json.loads(ContextFormatter("json").format(record))
        assert out["msg"] == "Placement 3/40"
        assert out["job"] == "board.json"
        assert out["lvl"] == "INFO"

    def test_human_format(self, clean_context) -> None:
        push_context(app="calibrate")
        record = logging.LogRecord(
            "paste_control.test", logging.WARNING, __file__, 1, "hello", (), None,
        )
        line = ContextFormatter("human", use_color=False).format(record)
        assert "app=calibrate |" in line
        assert line.endswith("hello")

    def test_setup_writes_file(self, tmp_path: Path, clean_context) -> None:
        log_file = tmp_path / "logs" / "run.log"
        root = logging.getLogger()
        level = root.level
        handlers = setup_logging(
            "INFO", str(log_file), to_stderr=False, json=True, capture_warnings=False,
        )
        try:
            logging.getLogger("paste_control.test").info("written")
            for h in handlers:
                h.flush()
            lines = log_file.read_text().splitlines()
            assert json.loads(lines[-1])["msg"] == "written"
        finally:
            root.setLevel(level)
            for h in handlers:
                root.removeHandler(h)
                h.close()
