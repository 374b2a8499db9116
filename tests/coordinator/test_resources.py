from __future__ import annotations

from pathlib import Path

import pytest

from deepscan_client.coordinator.resources import (
    ResourceError,
    load_rule_catalog,
    load_stylesheet,
    resources_dir,
)


def test_bundled_resources_load() -> None:
    directory = resources_dir()

    catalog = load_rule_catalog(directory)
    style = load_stylesheet(directory)

    rule = catalog.find("NULL_POINTER")
    assert rule is not None
    assert rule.description
    assert catalog.find("NO_SUCH_RULE") is None
    assert style.strip()


def test_extension_path_points_at_its_resources(tmp_path: Path) -> None:
    assert resources_dir(str(tmp_path)) == tmp_path / "resources"


def test_missing_resources_raise(tmp_path: Path) -> None:
    with pytest.raises(ResourceError):
        load_rule_catalog(tmp_path)
    with pytest.raises(ResourceError):
        load_stylesheet(tmp_path)


def test_malformed_catalog_raises(tmp_path: Path) -> None:
    (tmp_path / "deepscan-rules.json").write_text('{"rules": [{"name": "no key"}]}', encoding="utf-8")

    with pytest.raises(ResourceError):
        load_rule_catalog(tmp_path)
