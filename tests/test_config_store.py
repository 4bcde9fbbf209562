"""
Tests for the versioned configuration store.

Covers built-in defaults, file overrides, validation errors and hot reload
keeping the previous snapshot when the new file is invalid.
"""

import json

import pytest
from pydantic import ValidationError

from eventscout.config.store import ConfigStore
from eventscout.config.templates import GENERIC_TEMPLATE_KEY
from eventscout.core.exceptions import ConfigurationError


def write_config(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def config_file(tmp_path):
    return write_config(
        tmp_path / "eventscout.json",
        {
            "thresholds": {"min_solid_hits": 5},
            "templates": {"LegalTech": {"name": "LegalTech", "base_terms": [" legal tech ", ""]}},
        },
    )


class TestBuiltinDefaults:
    """Snapshot without a config file"""

    def test_defaults(self):
        snapshot = ConfigStore().snapshot()

        assert snapshot.version == 1
        assert GENERIC_TEMPLATE_KEY in snapshot.templates
        assert snapshot.thresholds.min_solid_hits == 3
        assert snapshot.providers.is_enabled("firecrawl")
        assert not snapshot.providers.is_enabled("bing")

    def test_snapshot_is_immutable(self):
        snapshot = ConfigStore().snapshot()

        with pytest.raises(ValidationError):
            snapshot.version = 7


class TestFileOverrides:
    """Overrides from a JSON file"""

    def test_thresholds_and_templates_are_merged(self, config_file):
        snapshot = ConfigStore(config_file).snapshot()

        assert snapshot.thresholds.min_solid_hits == 5
        assert snapshot.thresholds.rerank_top_k == 12
        template = snapshot.template_for("legaltech")
        assert template.key == "legaltech"
        assert template.base_terms == ["legal tech"]
        assert GENERIC_TEMPLATE_KEY in snapshot.templates

    def test_provider_toggles(self, tmp_path):
        path = write_config(tmp_path / "c.json", {"providers": {"google_cse": False}})

        snapshot = ConfigStore(path).snapshot()

        assert not snapshot.providers.is_enabled("google_cse")
        assert snapshot.providers.is_enabled("searxng")

    @pytest.mark.parametrize(
        "data",
        [
            {"thresholds": {"min_solid_hits": 0}},
            {"thresholds": {"high_quality_threshold": 0.3, "low_quality_threshold": 0.5}},
            {"templates": {"x": {"name": "X", "base_terms": ["x"], "version": 99}}},
            {"templates": {"x": {"name": "X", "base_terms": []}}},
            {"templates": {"x": {"name": "X", "base_terms": ["  ", ""]}}},
            {"templates": {"x": "not a mapping"}},
        ],
    )
    def test_invalid_values_raise_configuration_error(self, tmp_path, data):
        path = write_config(tmp_path / "bad.json", data)

        with pytest.raises(ConfigurationError):
            ConfigStore(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigStore(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="not valid JSON"):
            ConfigStore(path)


class TestReload:
    """Hot reload"""

    def test_reload_swaps_snapshot_and_bumps_version(self, config_file):
        store = ConfigStore(config_file)
        before = store.snapshot()
        write_config(config_file, {"thresholds": {"min_solid_hits": 7}})

        after = store.reload()

        assert after.version == 2
        assert after.thresholds.min_solid_hits == 7
        assert store.snapshot() is after
        assert before.thresholds.min_solid_hits == 5
        assert before.version == 1

    def test_failed_reload_keeps_previous_snapshot(self, config_file):
        store = ConfigStore(config_file)
        before = store.snapshot()
        config_file.write_text("{broken", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            store.reload()

        assert store.snapshot() is before
        assert store.snapshot().version == 1
