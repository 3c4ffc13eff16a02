import json

import pytest

from resource_accessor import Allowlist, ResourceAccessor


@pytest.fixture
def pages_dir(tmp_path):
    """Base directory holding about.html ("Hello")"""
    base = tmp_path / "pages"
    base.mkdir()
    (base / "about.html").write_bytes(b"Hello")
    return base


@pytest.fixture
def allowlist(pages_dir):
    return Allowlist.from_entries(str(pages_dir), {"about": str(pages_dir / "about.html")})


@pytest.fixture
def accessor(allowlist):
    return ResourceAccessor(allowlist)


@pytest.fixture
def write_config(tmp_path):
    """Write a JSON allowlist config (dict or raw text) and return its path"""
    def _write(config, name="allowlist.json"):
        path = tmp_path / name
        if isinstance(config, str):
            path.write_text(config, encoding="utf-8")
        else:
            path.write_text(json.dumps(config), encoding="utf-8")
        return path
    return _write
