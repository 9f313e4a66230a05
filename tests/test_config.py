from __future__ import annotations

from pathlib import Path

from brewqueue.utils.config import Config, get_config


class TestConfig:
    def test_defaults(self, monkeypatch) -> None:
        for name in (
            "BREWQUEUE_DB_PATH",
            "BREWQUEUE_RECALC_INTERVAL",
            "BREWQUEUE_ASSIGN_INTERVAL",
            "BREWQUEUE_DECAY_INTERVAL",
            "BREWQUEUE_LOG_LEVEL",
        ):
            monkeypatch.delenv(name, raising=False)

        config = Config()

        assert config.db_path == Path("data/brewqueue.db")
        assert config.recalc_interval == 30.0
        assert config.assign_interval == 30.0
        assert config.decay_interval == 60.0
        assert config.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch, tmp_path: Path) -> None:
        monkeypatch.setenv("BREWQUEUE_DB_PATH", str(tmp_path / "q.db"))
        monkeypatch.setenv("BREWQUEUE_DECAY_INTERVAL", "0.5")
        monkeypatch.setenv("BREWQUEUE_LOG_LEVEL", "DEBUG")

        config = get_config()

        assert config.db_path == tmp_path / "q.db"
        assert config.decay_interval == 0.5
        assert config.log_level == "DEBUG"
