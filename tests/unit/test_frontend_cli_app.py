"""Tests for the RavenBox command line."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from ravenbox.frontend.cli import app, logging_config


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "ravenbox.json"
    path.write_text(json.dumps({"local_root": str(tmp_path / "bucket")}), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("RAVENBOX_PASSWORD", raising=False)
    monkeypatch.delenv("RAVENBOX_CONFIG", raising=False)


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "notes.txt"
    path.write_bytes(b"meet at the usual place" * 100)
    return path


def run(*argv: str) -> int:
    return app.main(list(argv))


def test_upload_download_roundtrip(config_file, source, tmp_path, capsys):
    assert run("--config", str(config_file), "upload", str(source), "-u", "/docs", "-p", "correct-horse") == 0
    assert "docs/notes.txt (encrypted)" in capsys.readouterr().out

    out = tmp_path / "restored.txt"
    assert run("--config", str(config_file), "download", "docs/notes.txt", "-o", str(out), "-p", "correct-horse") == 0
    assert out.read_bytes() == source.read_bytes()


def test_download_without_password_fails(config_file, source, tmp_path, capsys):
    run("--config", str(config_file), "upload", str(source), "-p", "pw")
    capsys.readouterr()

    code = run("--config", str(config_file), "download", "notes.txt", "-o", str(tmp_path / "out.txt"))
    assert code == app.EXIT_ERROR
    assert "password is required" in capsys.readouterr().err


def test_password_from_environment(config_file, source, tmp_path, monkeypatch):
    monkeypatch.setenv("RAVENBOX_PASSWORD", "from-env")
    assert run("--config", str(config_file), "upload", str(source)) == 0
    monkeypatch.delenv("RAVENBOX_PASSWORD")

    out = tmp_path / "restored.txt"
    assert run("--config", str(config_file), "download", "notes.txt", "-o", str(out), "-p", "from-env") == 0
    assert out.read_bytes() == source.read_bytes()


def test_prompt_password(config_file, source, monkeypatch, capsys):
    monkeypatch.setattr(app.getpass, "getpass", lambda prompt="": "typed")
    assert run("--config", str(config_file), "upload", str(source), "-P") == 0
    assert "(encrypted)" in capsys.readouterr().out


def test_list(config_file, source, capsys):
    run("--config", str(config_file), "upload", str(source), "-u", "a")
    run("--config", str(config_file), "upload", str(source), "-u", "b")
    capsys.readouterr()

    assert run("--config", str(config_file), "list", "-u", "a") == 0
    out = capsys.readouterr().out
    assert "1: a/notes.txt" in out
    assert "b/notes.txt" not in out


def test_list_empty(config_file, capsys):
    assert run("--config", str(config_file), "list") == 0
    assert "No objects found." in capsys.readouterr().out


def test_missing_config_is_reported(tmp_path, capsys):
    path = tmp_path / "new" / "ravenbox.json"
    assert run("--config", str(path), "list") == app.EXIT_ERROR
    assert "fill in" in capsys.readouterr().err
    assert path.exists()


def test_invalid_max_keys_is_usage_error(config_file):
    with pytest.raises(SystemExit) as exc:
        run("--config", str(config_file), "list", "-m", "abc")
    assert exc.value.code == 2


# ==============================================================================
# Tests: local encrypt/decrypt
# ==============================================================================

def test_encrypt_decrypt_local(source, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert run("encrypt", str(source), "-p", "pw") == 0
    encrypted = tmp_path / "notes.txt.rbx"
    assert encrypted.exists()

    out = tmp_path / "plain.txt"
    assert run("decrypt", str(encrypted), str(out), "-p", "pw") == 0
    assert out.read_bytes() == source.read_bytes()


def test_decrypt_wrong_password_exit_code(source, tmp_path, capsys):
    encrypted = tmp_path / "notes.rbx"
    run("encrypt", str(source), str(encrypted), "-p", "pw")

    assert run("decrypt", str(encrypted), str(tmp_path / "out"), "-p", "bad") == app.EXIT_ERROR
    assert "authentication failed" in capsys.readouterr().err
    assert not (tmp_path / "out").exists()


def test_encrypt_prompts_when_no_password(source, tmp_path, monkeypatch):
    prompts = []

    def fake_getpass(prompt=""):
        prompts.append(prompt)
        return "typed"

    monkeypatch.setattr(app.getpass, "getpass", fake_getpass)
    assert run("encrypt", str(source), str(tmp_path / "n.rbx")) == 0
    assert prompts == ["Password: "]


def test_keyboard_interrupt(monkeypatch, source, tmp_path):
    def interrupted(*args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr(app, "encrypt_file", interrupted)
    assert run("encrypt", str(source), str(tmp_path / "n.rbx"), "-p", "pw") == app.EXIT_INTERRUPTED


# ==============================================================================
# Tests: logging
# ==============================================================================

def test_verbose_flag_reaches_logging(config_file, monkeypatch):
    calls = []
    monkeypatch.setattr(app, "configure_logging", lambda verbose=False: calls.append(verbose))
    run("--config", str(config_file), "-v", "list")
    run("--config", str(config_file), "list")
    assert calls == [True, False]


def test_configure_logging_keeps_boto_quiet():
    logging_config.configure_logging(verbose=True)
    assert logging.getLogger("botocore").level == logging.WARNING
    assert logging.getLogger("boto3").level == logging.WARNING
