from credentials import EnvVault, StaticCredentials


def test_static_credentials():
    creds = StaticCredentials({"Anthropic": "key", "Bedrock": ""})
    assert creds.get_secret("Anthropic") == "key"
    assert creds.get_secret("Bedrock") is None
    assert creds.get_secret("Other") is None


def test_env_vault_round_trip(tmp_path, monkeypatch):
    monkeypatch.delenv("ANTHROPIC_CREDENTIALS", raising=False)
    env_path = tmp_path / ".env"
    env_path.write_text("", encoding="utf-8")
    vault = EnvVault(str(env_path))

    assert vault.get_secret("Anthropic") is None
    assert vault.save_secret("Anthropic", "sk-test") is True
    assert "ANTHROPIC_CREDENTIALS" in env_path.read_text(encoding="utf-8")
    assert vault.get_secret("Anthropic") == "sk-test"

    assert vault.delete_secret("Anthropic") is True
    assert vault.get_secret("Anthropic") is None
    assert "ANTHROPIC_CREDENTIALS" not in env_path.read_text(encoding="utf-8")


def test_env_vault_reads_process_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("MY_PROVIDER_CREDENTIALS", "  AKIA:secret  ")
    vault = EnvVault(str(tmp_path / "missing.env"))
    assert vault.get_secret("my-provider") == "AKIA:secret"
    assert vault.delete_secret("my-provider") is False
