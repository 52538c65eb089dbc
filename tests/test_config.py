"""
tests/test_config.py — YAML Configuration Loader Tests
=======================================================
"""

from __future__ import annotations

import pytest

from cinelog.config import CinelogConfig, FeedConfig, WorkerConfig, load_config


def _write(tmp_path, text: str):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "absent.yaml")
        assert cfg == CinelogConfig()
        assert cfg.feed.per_followee_limit == 5
        assert cfg.feed.max_items == 30
        assert cfg.worker.evaluation_delay_seconds == 2.0

    def test_values_read(self, tmp_path):
        path = _write(tmp_path, "feed:\n  max_items: 50\nworker:\n  batch_size: 10\n")
        cfg = load_config(path)
        assert cfg.feed == FeedConfig(max_items=50)
        assert cfg.worker == WorkerConfig(batch_size=10)

    def test_empty_file(self, tmp_path):
        assert load_config(_write(tmp_path, "")) == CinelogConfig()

    def test_unknown_keys_ignored(self, tmp_path, caplog):
        path = _write(tmp_path, "feed:\n  max_items: 12\n  colour: blue\n")
        with caplog.at_level("WARNING", logger="cinelog.config"):
            cfg = load_config(path)
        assert cfg.feed.max_items == 12
        assert "colour" in caplog.text

    def test_env_var_path(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "feed:\n  per_followee_limit: 3\n")
        monkeypatch.setenv("CINELOG_CONFIG", str(path))
        assert load_config().feed.per_followee_limit == 3

    def test_frozen(self):
        cfg = CinelogConfig()
        with pytest.raises(AttributeError):
            cfg.feed.max_items = 1


class TestValidation:
    @pytest.mark.parametrize("text", [
        "feed:\n  max_items: 0\n",
        "feed:\n  query_timeout_seconds: -1\n",
        "worker:\n  max_attempts: 0\n",
        "worker:\n  retry_backoff_seconds: -5\n",
    ])
    def test_bad_limits_rejected(self, tmp_path, text):
        with pytest.raises(ValueError):
            load_config(_write(tmp_path, text))

    def test_section_must_be_mapping(self, tmp_path):
        with pytest.raises(ValueError, match="must be a mapping"):
            load_config(_write(tmp_path, "feed: [1, 2]\n"))
