from __future__ import annotations

from pathlib import Path

import pytest

import main as cli

from conftest import PASSWORD


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IDENTITY_STORE_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("IDENTITY_STORE_DB_PATH", raising=False)
    monkeypatch.delenv("IDENTITY_STORE_DEACTIVATE_ON_DELETE", raising=False)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "cli.sqlite3"


def _answer_passwords(monkeypatch: pytest.MonkeyPatch, *answers: str) -> None:
    replies = iter(answers)
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(replies))


def test_parse_args_defaults_to_serve() -> None:
    args = cli._parse_args([])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080
    assert args.config is None
    assert args.db_path is None


def test_parse_args_inserts_serve_after_global_options() -> None:
    args = cli._parse_args(["--db", "users.sqlite3", "--port", "9000"])
    assert args.command == "serve"
    assert args.port == 9000
    assert args.db_path == "users.sqlite3"


def test_parse_args_subcommands() -> None:
    args = cli._parse_args(["--config", "store.yaml", "create-user", "jdoe", "jdoe@example.com", "Jane", "Doe"])
    assert args.command == "create-user"
    assert args.config == "store.yaml"
    assert (args.user_name, args.email, args.given_name, args.family_name) == (
        "jdoe",
        "jdoe@example.com",
        "Jane",
        "Doe",
    )
    assert args.phone is None

    args = cli._parse_args(["list-users", "--filter", 'userName eq "jdoe"'])
    assert args.command == "list-users"
    assert args.filter_text == 'userName eq "jdoe"'


def test_parse_args_accepts_equals_form_for_global_options() -> None:
    args = cli._parse_args(["--config=store.yaml", "--db=users.sqlite3", "list-users"])
    assert args.command == "list-users"
    assert args.config == "store.yaml"
    assert args.db_path == "users.sqlite3"

    args = cli._parse_args(["--db=users.sqlite3"])
    assert args.command == "serve"
    assert args.db_path == "users.sqlite3"


def test_list_users_with_equals_form_db_option(db_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main([f"--db={db_path}", "list-users"]) == 0
    assert db_path.exists()
    assert capsys.readouterr().out == ""


def test_init_db_creates_database(db_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["--db", str(db_path), "init-db"]) == 0
    assert db_path.exists()
    assert "Database initialisation complete." in capsys.readouterr().out


def test_create_and_list_users(
    db_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _answer_passwords(monkeypatch, PASSWORD, PASSWORD)
    exit_code = cli.main(
        ["--db", str(db_path), "create-user", "jdoe", "jdoe@example.com", "Jane", "Doe", "--phone", "555-0100"]
    )
    assert exit_code == 0
    assert "jdoe <jdoe@example.com>" in capsys.readouterr().out

    assert cli.main(["--db", str(db_path), "list-users"]) == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    columns = lines[0].split("\t")
    assert columns[1:] == ["jdoe", "jdoe@example.com", "v0", "active"]


def test_create_user_reports_store_errors(
    db_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _answer_passwords(monkeypatch, PASSWORD, PASSWORD, PASSWORD, PASSWORD)
    assert cli.main(["--db", str(db_path), "create-user", "jdoe", "jdoe@example.com", "Jane", "Doe"]) == 0
    capsys.readouterr()

    assert cli.main(["--db", str(db_path), "create-user", "jdoe", "other@example.com", "Jane", "Doe"]) == 1
    assert "Error: Username already in use" in capsys.readouterr().err


def test_list_users_with_filter_needs_translator(db_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["--db", str(db_path), "list-users", "--filter", 'userName eq "jdoe"']) == 1
    assert "Error:" in capsys.readouterr().err


def test_prompt_for_password_retries(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    _answer_passwords(monkeypatch, "first-secret", "other-secret", "short", "short", PASSWORD, PASSWORD)
    assert cli.prompt_for_password(8) == PASSWORD
    err = capsys.readouterr().err
    assert "Passwords do not match" in err
    assert "at least 8 characters" in err


def test_prompt_for_password_gives_up(monkeypatch: pytest.MonkeyPatch) -> None:
    _answer_passwords(monkeypatch, *(["a-secret", "b-secret"] * 3))
    with pytest.raises(SystemExit):
        cli.prompt_for_password(8)
