"""Tests for Settings defaults and parsing helpers."""

from pathlib import Path

from prismflow.config import Settings


def test_defaults() -> None:
    s = Settings()
    assert s.scheduler_timezone == "Asia/Shanghai"
    assert s.max_agent_rounds == 5
    assert s.batch_workers == 5
    assert s.batch_worker_stagger_seconds == 0.2
    assert s.default_agent_id == "default_summarizer"
    assert s.log_level == "INFO"


def test_env_ignored_under_pytest(monkeypatch) -> None:
    monkeypatch.setenv("BATCH_WORKERS", "9")
    assert Settings().batch_workers == 5


def test_get_skill_paths() -> None:
    s = Settings(skill_paths=" skills , data/skills ,,")
    assert s.get_skill_paths() == [Path("skills"), Path("data/skills")]


def test_get_skill_paths_empty() -> None:
    assert Settings(skill_paths="  ").get_skill_paths() == []
