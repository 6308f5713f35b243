import json

from tuner.config import AppConfig, get_default_config_path


def test_defaults_when_file_missing(tmp_path):
    config = AppConfig(tmp_path / "config.json")

    assert config.get("preview_count") == 5
    assert config.get("window_size_ms") == 60000
    assert config.get("upcoming_chunk_size") == 20
    assert config.load_warning is None


def test_saved_values_override_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"preview_count": "8", "llm_timeout": "30"}), encoding="utf-8")

    config = AppConfig(path)

    assert config.get("preview_count") == 8
    assert config.get("llm_timeout") == 30.0
    assert config.get("llm_model") == "gpt-4o"


def test_invalid_numbers_fall_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"upcoming_chunk_size": "many"}), encoding="utf-8")

    assert AppConfig(path).get("upcoming_chunk_size") == 20


def test_corrupt_file_is_preserved(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")

    config = AppConfig(path)

    assert config.get("llm_model") == "gpt-4o"
    assert "Failed to parse config" in config.load_warning
    assert (tmp_path / "config.json.corrupt").read_text(encoding="utf-8") == "{not json"


def test_set_persists_immediately(tmp_path):
    path = tmp_path / "nested" / "config.json"
    config = AppConfig(path)

    config.set("transform_model", "rewrite-model")

    assert json.loads(path.read_text(encoding="utf-8"))["transform_model"] == "rewrite-model"
    assert AppConfig(path).get("transform_model") == "rewrite-model"


def test_model_and_key_fallbacks(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "from-env")
    config = AppConfig(tmp_path / "config.json")
    config.settings["llm_model"] = "base-model"

    assert config.get("categorize_model") == "base-model"
    assert config.get("llm_api_key") == "from-env"

    config.settings["llm_api_key"] = "from-file"
    assert config.get("llm_api_key") == "from-file"


def test_config_dir_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("CAPTION_TUNER_CONFIG_DIR", str(tmp_path))

    assert get_default_config_path() == tmp_path / "config.json"
