"""Tests for lkb/config.py configuration loading."""

import pytest

from lkb.config import ENV_VARS, Settings, get_default_config, load_config
from lkb.errors import ConfigurationError

FULL_ENV = {
    "AZURE_OPENAI_ENDPOINT": "https://example.openai.azure.com",
    "AZURE_OPENAI_API_KEY": "secret",
    "AZURE_OPENAI_EMBEDDING_DEPLOYMENT": "text-embedding-ada-002",
    "AZURE_OPENAI_CHAT_DEPLOYMENT": "gpt-4o-mini",
    "KNOWLEDGE_STORE_URI": "./data/knowledge",
}


class TestLoadConfig:
    def test_explicit_file_merged_over_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("query:\n  limit: 5\nstore:\n  collection: lectures\n")

        config = load_config(path)

        assert config["query"]["limit"] == 5
        assert config["store"]["collection"] == "lectures"
        # untouched keys keep defaults
        assert config["query"]["min_relevance_score"] == 0.7
        assert config["embeddings"]["dimension"] == 1536

    def test_missing_explicit_file_raises(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path) == get_default_config()

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_defaults_are_fresh_copies(self):
        first = get_default_config()
        first["query"]["limit"] = 99
        assert get_default_config()["query"]["limit"] == 1


class TestSettings:
    def test_from_env(self):
        settings = Settings.from_env(FULL_ENV)
        assert settings.endpoint == FULL_ENV["AZURE_OPENAI_ENDPOINT"]
        assert settings.chat_deployment == "gpt-4o-mini"
        assert settings.store_uri == "./data/knowledge"
        assert settings.store_api_key is None

    def test_optional_store_key(self):
        settings = Settings.from_env({**FULL_ENV, "KNOWLEDGE_STORE_API_KEY": "k"})
        assert settings.store_api_key == "k"

    def test_missing_variables_all_reported(self):
        env = dict(FULL_ENV)
        del env["AZURE_OPENAI_API_KEY"]
        env["KNOWLEDGE_STORE_URI"] = "   "

        with pytest.raises(ConfigurationError) as exc_info:
            Settings.from_env(env)

        assert "AZURE_OPENAI_API_KEY" in exc_info.value.message
        assert "KNOWLEDGE_STORE_URI" in exc_info.value.message

    def test_empty_environment(self):
        with pytest.raises(ConfigurationError) as exc_info:
            Settings.from_env({})
        for var in ENV_VARS.values():
            assert var in exc_info.value.message
