from field_expenses.core.config import AppConfig, ConfigResolver, load_settings, save_setting


def resolver(tmp_path, overrides=None, environ=None, dotenv=None):
    env_path = tmp_path / ".env"
    if dotenv is not None:
        env_path.write_text(dotenv, encoding="utf-8")
    return ConfigResolver(overrides=overrides, environ=environ or {}, dotenv_path=env_path,
                          settings_path=tmp_path / "settings.json")


def test_layer_order(tmp_path):
    save_setting("LLM_MODEL", "from-settings", tmp_path / "settings.json")
    save_setting("FIELD_EXPENSES_USER", "settings-user", tmp_path / "settings.json")
    r = resolver(tmp_path,
                 overrides={"LLM_PROVIDER": "anthropic", "LLM_MODEL": None},
                 environ={"LLM_PROVIDER": "openai", "LLM_MODEL": "from-env"},
                 dotenv="LLM_MODEL=from-dotenv\nOPENAI_API_KEY=sk-dotenv\n")

    assert r.get("LLM_PROVIDER") == "anthropic"
    assert r.get("LLM_MODEL") == "from-env"
    assert r.get("OPENAI_API_KEY") == "sk-dotenv"
    assert r.get("FIELD_EXPENSES_USER") == "settings-user"
    assert r.get("FIELD_EXPENSES_DB_TABLE") == "transactions"
    assert r.get("MISSING", "fallback") == "fallback"
    assert "MISSING" not in r


def test_app_config_from_resolver(tmp_path):
    r = resolver(tmp_path, environ={
        "FIELD_EXPENSES_DB_URL": "https://example.supabase.co",
        "FIELD_EXPENSES_DB_KEY": "anon",
        "FIELD_EXPENSES_USER": "user-1",
        "LLM_PROVIDER": "local",
    })
    config = AppConfig.from_resolver(r)
    assert config.uses_remote_store
    assert config.user_id == "user-1"
    assert config.llm_provider == "local"
    assert config.db_table == "transactions"


def test_remote_store_needs_http_url_and_key():
    assert not AppConfig(db_url="example.supabase.co", db_key="k").uses_remote_store
    assert not AppConfig(db_url="https://example.supabase.co").uses_remote_store


def test_unreadable_settings_are_ignored(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    assert load_settings(path) == {}
