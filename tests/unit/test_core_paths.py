"""Unit tests for remote key and output path helpers."""

import pytest

from ravenbox.core.paths import (
    atomic_output,
    build_remote_key,
    crypt_output_name,
    key_basename,
    sanitize_prefix,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, ""),
        ("", ""),
        ("/", ""),
        ("///", ""),
        ("////Book/Literature Books", "Book/Literature Books/"),
        ("backups/", "backups/"),
        ("a\\b", "a/b/"),
    ],
)
def test_sanitize_prefix(raw, expected):
    assert sanitize_prefix(raw) == expected


def test_build_remote_key_uses_file_name(tmp_path):
    assert build_remote_key(tmp_path / "report.pdf", "/docs") == "docs/report.pdf"
    assert build_remote_key(tmp_path / "report.pdf") == "report.pdf"


def test_build_remote_key_custom_name(tmp_path):
    assert build_remote_key(tmp_path / "report.pdf", "docs", name="renamed.bin") == "docs/renamed.bin"


def test_build_remote_key_rejects_nameless_path():
    with pytest.raises(ValueError):
        build_remote_key("/", "docs")


def test_key_basename():
    assert key_basename("a/b/c.txt") == "c.txt"
    assert key_basename("c.txt") == "c.txt"


def test_crypt_output_name():
    assert crypt_output_name("/tmp/notes.txt", encrypt=True) == "notes.txt.rbx"
    assert crypt_output_name("/tmp/notes.txt.rbx", encrypt=False) == "notes.txt"
    assert crypt_output_name("/tmp/notes.bin", encrypt=False) == "notes.bin.dec"
    assert crypt_output_name(".rbx", encrypt=False) == ".rbx.dec"


# ==============================================================================
# Tests: atomic_output
# ==============================================================================

def test_atomic_output_success(tmp_path):
    target = tmp_path / "nested" / "out.bin"
    with atomic_output(target) as f:
        f.write(b"done")
        assert not target.exists()
    assert target.read_bytes() == b"done"
    assert list(target.parent.iterdir()) == [target]


def test_atomic_output_failure_leaves_nothing(tmp_path):
    target = tmp_path / "out.bin"
    with pytest.raises(RuntimeError):
        with atomic_output(target) as f:
            f.write(b"partial")
            raise RuntimeError("boom")
    assert not target.exists()
    assert list(tmp_path.iterdir()) == []


def test_atomic_output_failure_keeps_existing_file(tmp_path):
    target = tmp_path / "out.bin"
    target.write_bytes(b"old")
    with pytest.raises(RuntimeError):
        with atomic_output(target) as f:
            f.write(b"new")
            raise RuntimeError("boom")
    assert target.read_bytes() == b"old"
