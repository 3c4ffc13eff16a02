import os
from pathlib import Path

import pytest

from resource_accessor import Allowlist, AllowlistError, load_allowlist


def test_relative_entries_resolve_inside_base_dir(pages_dir):
    allowlist = Allowlist.from_entries(str(pages_dir), {"about": "about.html"})
    assert allowlist.get("about") == (pages_dir / "about.html").resolve()
    assert allowlist.base_dir == pages_dir.resolve()
    assert "about" in allowlist
    assert len(allowlist) == 1


def test_entries_are_read_only(allowlist):
    with pytest.raises(TypeError):
        allowlist.entries["passwd"] = "/etc/passwd"
    assert "passwd" not in allowlist


def test_source_mapping_changes_do_not_leak(pages_dir):
    entries = {"about": "about.html"}
    allowlist = Allowlist.from_entries(str(pages_dir), entries)
    entries["other"] = "other.html"
    assert "other" not in allowlist


def test_keys_are_sorted(pages_dir):
    allowlist = Allowlist.from_entries(str(pages_dir), {"b": "about.html", "a": "about.html"})
    assert allowlist.keys() == ["a", "b"]


@pytest.mark.parametrize("value", ["../outside.txt", "/etc/passwd", ".", "sub/../../x"])
def test_entries_outside_base_dir_are_rejected(pages_dir, value):
    with pytest.raises(AllowlistError):
        Allowlist.from_entries(str(pages_dir), {"bad": value})


def test_symlink_escaping_base_dir_is_rejected(pages_dir, tmp_path):
    outside = tmp_path / "secret.txt"
    outside.write_text("secret")
    os.symlink(outside, pages_dir / "link.txt")

    with pytest.raises(AllowlistError):
        Allowlist.from_entries(str(pages_dir), {"link": "link.txt"})


def test_relative_base_dir_is_rejected():
    with pytest.raises(AllowlistError):
        Allowlist.from_entries("pages", {})


@pytest.mark.parametrize("key", ["", 1, None])
def test_invalid_keys_are_rejected(pages_dir, key):
    with pytest.raises(AllowlistError):
        Allowlist.from_entries(str(pages_dir), {key: "about.html"})


def test_missing_file_is_allowed_with_warning(pages_dir, caplog):
    with caplog.at_level("WARNING", logger="resource_accessor"):
        allowlist = Allowlist.from_entries(str(pages_dir), {"later": "later.html"})
    assert "later" in allowlist
    assert "later" in caplog.text


def test_load_allowlist_from_json(pages_dir, write_config):
    path = write_config({"base_dir": str(pages_dir), "files": {"about": "about.html"}})
    allowlist = load_allowlist(path)
    assert allowlist.keys() == ["about"]
    assert allowlist.get("about").read_bytes() == b"Hello"


def test_load_allowlist_without_files_is_empty(pages_dir, write_config):
    path = write_config({"base_dir": str(pages_dir)})
    assert len(load_allowlist(path)) == 0


def test_duplicate_keys_are_rejected(pages_dir, write_config):
    path = write_config(
        '{"base_dir": "%s", "files": {"about": "about.html", "about": "other.html"}}' % pages_dir
    )
    with pytest.raises(AllowlistError, match="Duplicate"):
        load_allowlist(path)


@pytest.mark.parametrize("config", [
    "not json",
    "[]",
    '{"files": {}}',
    '{"base_dir": 5}',
])
def test_invalid_config_is_rejected(write_config, config):
    with pytest.raises(AllowlistError):
        load_allowlist(write_config(config))


def test_files_must_be_an_object(pages_dir, write_config):
    path = write_config({"base_dir": str(pages_dir), "files": ["about.html"]})
    with pytest.raises(AllowlistError):
        load_allowlist(path)


def test_missing_config_file(tmp_path):
    with pytest.raises(AllowlistError):
        load_allowlist(tmp_path / "nope.json")


def test_null_byte_in_path_is_rejected(pages_dir):
    with pytest.raises(AllowlistError, match="Invalid path"):
        Allowlist.from_entries(str(pages_dir), {"a": "x\x00y"})


def test_null_byte_in_json_config_is_rejected(pages_dir, write_config):
    path = write_config({"base_dir": str(pages_dir), "files": {"a": "x\u0000y"}})
    with pytest.raises(AllowlistError):
        load_allowlist(path)


def test_os_error_while_resolving_is_wrapped(pages_dir, monkeypatch):
    def denied(self):
        raise PermissionError("denied")

    monkeypatch.setattr(Path, "is_file", denied)
    with pytest.raises(AllowlistError, match="Invalid path"):
        Allowlist.from_entries(str(pages_dir), {"about": "about.html"})
