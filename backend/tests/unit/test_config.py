"""Tests for the settings loader."""
from pathlib import Path

import pytest
import yaml

from backend.services.shared.config import (
    DEFAULT_SETTINGS_PATH,
    PROJECT_ROOT,
    Config,
    get_config,
    reset_config,
)


@pytest.fixture(autouse=True)
def reset_singleton():
    reset_config()
    yield
    reset_config()


def _write(tmp_dir: Path, data) -> Path:
    path = tmp_dir / "custom.yaml"
    path.write_text(yaml.dump(data))
    return path


class TestLookups:
    def test_nested_key(self, sample_settings):
        assert Config(str(sample_settings)).get("registry.default_model") == "model-y"

    def test_missing_key_returns_default(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.get("nonexistent.key") is None
        assert cfg.get("generation.nonexistent", 99) == 99

    def test_explicit_null_is_not_missing(self, tmp_dir):
        cfg = Config(str(_write(tmp_dir, {"logging": {"file": None}})))
        assert cfg.get("logging.file", "fallback") is None

    def test_key_through_scalar_is_missing(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.get("render.fps.value", "x") == "x"

    def test_section_is_a_copy(self, sample_settings):
        cfg = Config(str(sample_settings))
        section = cfg.section("render")
        section["fps"] = 60
        assert cfg.get("render.fps") == 24
        assert cfg.section("absent") == {}


class TestTypedAccessors:
    def test_numbers_are_coerced(self, tmp_dir):
        cfg = Config(str(_write(tmp_dir, {"render": {"fps": "30"}, "generation": {"poll_interval_sec": 2}})))
        assert cfg.get_int("render.fps", 24) == 30
        assert cfg.get_float("generation.poll_interval_sec", 5.0) == 2.0
        assert cfg.get_float("generation.request_timeout_sec", 600) == 600.0

    def test_get_list(self, sample_settings, tmp_dir):
        assert Config(str(sample_settings)).get_list("registry.generic_fallbacks") == ["model-y", "legacy"]
        cfg = Config(str(_write(tmp_dir, {"registry": {"generic_fallbacks": "model-y"}})))
        assert cfg.get_list("registry.generic_fallbacks") == ["model-y"]
        assert cfg.get_list("registry.fallback_priority") == []


class TestPaths:
    def test_get_path_as_written(self, sample_settings):
        path = Config(str(sample_settings)).get_path("storage.timeline_db")
        assert isinstance(path, Path)
        assert path.name == "timelines.db"

    def test_get_path_missing_key_raises(self, sample_settings):
        with pytest.raises(KeyError):
            Config(str(sample_settings)).get_path("storage.nonexistent_path_key_xyz")

    def test_relative_path_resolved_against_root(self, tmp_dir):
        cfg = Config(str(_write(tmp_dir, {"render": {"output_dir": "output/renders"}})), root=tmp_dir)
        assert cfg.resolve_path("render.output_dir") == tmp_dir / "output" / "renders"

    def test_absolute_path_unchanged(self, sample_settings, tmp_dir):
        cfg = Config(str(sample_settings))
        assert cfg.resolve_path("storage.timeline_db") == tmp_dir / "timelines.db"

    def test_default_root(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.path == sample_settings
        assert (PROJECT_ROOT / "backend" / "main.py").exists()


class TestEnvironment:
    def test_env_value_visible(self, sample_settings, monkeypatch):
        monkeypatch.setenv("TS_TEST_VIDEO_API_TOKEN", "test-token-abc")
        cfg = Config(str(sample_settings))
        assert cfg.get_env(cfg.get("generation.api_token_env")) == "test-token-abc"

    def test_missing_env_uses_default(self, sample_settings):
        cfg = Config(str(sample_settings))
        assert cfg.get_env("NONEXISTENT_ENV_VAR_XYZ") is None
        assert cfg.get_env("NONEXISTENT_ENV_VAR_XYZ", "default") == "default"

    def test_unset_env_name(self, sample_settings):
        assert Config(str(sample_settings)).get_env(None, "default") == "default"

    def test_local_env_file_loaded(self, sample_settings, tmp_dir, monkeypatch):
        monkeypatch.delenv("TS_TEST_ENV_FILE_VALUE", raising=False)
        (tmp_dir / "backend").mkdir()
        (tmp_dir / "backend" / ".env").write_text("TS_TEST_ENV_FILE_VALUE=from-file\n")
        try:
            cfg = Config(str(sample_settings), root=tmp_dir)
            assert cfg.get_env("TS_TEST_ENV_FILE_VALUE") == "from-file"
        finally:
            monkeypatch.delenv("TS_TEST_ENV_FILE_VALUE", raising=False)


class TestSingleton:
    def test_same_instance(self, sample_settings):
        assert get_config(str(sample_settings)) is get_config()

    def test_reset_clears_singleton(self, sample_settings):
        cfg1 = get_config(str(sample_settings))
        reset_config()
        assert get_config(str(sample_settings)) is not cfg1

    def test_packaged_settings_by_default(self):
        assert get_config().get("registry.default_model") == "wan-2.5-i2v"


class TestPackagedSettings:
    def test_has_every_section(self):
        cfg = Config(str(DEFAULT_SETTINGS_PATH))
        for section in ("logging", "storage", "registry", "generation", "frames", "render"):
            assert cfg.section(section), section

    def test_registry_file_resolves(self):
        assert Config(str(DEFAULT_SETTINGS_PATH)).resolve_path("registry.path").exists()


class TestValidation:
    def test_missing_file_raises(self, tmp_dir):
        with pytest.raises(FileNotFoundError):
            Config(str(tmp_dir / "nonexistent.yaml"))

    def test_invalid_yaml_raises(self, tmp_dir):
        bad = tmp_dir / "bad.yaml"
        bad.write_text("key: [unclosed bracket\n")
        with pytest.raises(yaml.YAMLError):
            Config(str(bad))

    def test_non_mapping_raises(self, tmp_dir):
        bad = tmp_dir / "list.yaml"
        bad.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            Config(str(bad))
