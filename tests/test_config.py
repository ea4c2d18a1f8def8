from __future__ import annotations

from pathlib import Path

import pytest

from identity_store.config import (
    StoreConfig,
    import_object,
    load_config_from_env,
    load_store_config,
    resolve_config_path,
)
from identity_store.paging import DEFAULT_PAGE_SIZE


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("IDENTITY_STORE_CONFIG", "IDENTITY_STORE_DB_PATH", "IDENTITY_STORE_DEACTIVATE_ON_DELETE"):
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    config = StoreConfig()
    assert config.database_path is None
    assert config.page_size == DEFAULT_PAGE_SIZE
    assert config.deactivate_on_delete is True
    assert config.hash_schemes == ("pbkdf2_sha256",)
    assert config.filter_translator is None


def test_load_yaml_with_section(tmp_path: Path) -> None:
    config_path = tmp_path / "store.yaml"
    config_path.write_text(
        """
identity_store:
  database_path: data/users.sqlite3
  page_size: 50
  deactivate_on_delete: false
  hash_schemes: [pbkdf2_sha256, sha256_crypt]
  hash_rounds: 2000
  password_min_length: 10
  filter_translator: my_filters:Translator
""",
        encoding="utf-8",
    )

    config = load_store_config(config_path)

    assert config.database_path == (tmp_path / "data" / "users.sqlite3").resolve()
    assert config.page_size == 50
    assert config.deactivate_on_delete is False
    assert config.hash_schemes == ("pbkdf2_sha256", "sha256_crypt")
    assert config.hash_rounds == 2000
    assert config.password_min_length == 10
    assert config.filter_translator == "my_filters:Translator"


def test_load_flat_yaml_and_single_scheme(tmp_path: Path) -> None:
    config_path = tmp_path / "store.yaml"
    config_path.write_text("hash_schemes: sha256_crypt\n", encoding="utf-8")

    config = load_store_config(config_path)

    assert config.hash_schemes == ("sha256_crypt",)
    assert config.page_size == DEFAULT_PAGE_SIZE


def test_empty_yaml_gives_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "store.yaml"
    config_path.write_text("", encoding="utf-8")
    assert load_store_config(config_path) == StoreConfig()


@pytest.mark.parametrize(
    "data, message",
    [
        ({"unexpected": 1}, "Unknown identity store configuration fields"),
        ({"page_size": 0}, "page_size"),
        ({"hash_schemes": []}, "hash_schemes"),
        ({"password_min_length": 12, "password_max_length": 8}, "Password length"),
    ],
)
def test_invalid_settings_are_rejected(data, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        StoreConfig.from_dict(data)


def test_non_mapping_file_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "store.yaml"
    config_path.write_text("- one\n- two\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_store_config(config_path)


def test_resolve_config_path_prefers_env_value(tmp_path: Path) -> None:
    assert resolve_config_path(str(tmp_path / "x.yaml")) == (tmp_path / "x.yaml").resolve()
    assert resolve_config_path(None).name == "identity_store.yaml"


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "store.yaml"
    config_path.write_text("page_size: 25\ndeactivate_on_delete: true\n", encoding="utf-8")
    monkeypatch.setenv("IDENTITY_STORE_CONFIG", str(config_path))
    monkeypatch.setenv("IDENTITY_STORE_DB_PATH", str(tmp_path / "override.sqlite3"))
    monkeypatch.setenv("IDENTITY_STORE_DEACTIVATE_ON_DELETE", "no")

    config = load_config_from_env()

    assert config.page_size == 25
    assert config.database_path == (tmp_path / "override.sqlite3").resolve()
    assert config.deactivate_on_delete is False


def test_missing_config_file_falls_back_to_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IDENTITY_STORE_CONFIG", str(tmp_path / "absent.yaml"))
    assert load_config_from_env() == StoreConfig()


def test_import_object_accepts_both_separators() -> None:
    assert import_object("identity_store.paging:DEFAULT_PAGE_SIZE") == DEFAULT_PAGE_SIZE
    assert import_object("identity_store.paging.DEFAULT_PAGE_SIZE") == DEFAULT_PAGE_SIZE


@pytest.mark.parametrize("path", ["nomodule", "identity_store.paging:missing"])
def test_import_object_rejects_bad_paths(path: str) -> None:
    with pytest.raises(ValueError):
        import_object(path)
