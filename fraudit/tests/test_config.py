from __future__ import annotations

from fraudit.config import get_settings, load_settings


class TestSettings:
    def test_env_overrides(self, tmp_path):
        settings = get_settings()
        assert settings.project_root == tmp_path.resolve()
        assert settings.database_url == "sqlite://"
        assert settings.batch_page_size == 10
        assert settings.schedule_cron == "0 1 * * *"
        assert settings.auto_analyze_existing is False

    def test_yaml_section_overrides_defaults(self, tmp_path):
        (tmp_path / "fraudit.yaml").write_text(
            "fraudit:\n"
            "  batch_page_size: 25\n"
            "  preferred_model_type: LOGISTIC_REGRESSION\n"
            "  auto_analyze_existing: true\n"
            "  not_a_setting: 1\n",
            encoding="utf-8",
        )
        settings = load_settings()
        assert settings.batch_page_size == 25
        assert settings.preferred_model_type == "LOGISTIC_REGRESSION"
        assert settings.auto_analyze_existing is True
        assert not hasattr(settings, "not_a_setting")

    def test_malformed_yaml_root_is_ignored(self, tmp_path):
        path = tmp_path / "other.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        settings = load_settings(path)
        assert settings.batch_page_size == 10
        assert settings.config_file == path

    def test_sqlite_directory_created(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FRAUDIT_DATABASE_URL", f"sqlite:///{tmp_path / 'nested' / 'db.sqlite'}")
        get_settings.cache_clear()
        get_settings()
        assert (tmp_path / "nested").is_dir()
