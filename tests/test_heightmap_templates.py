"""Tests for the template catalog and settings."""

import pytest

from py_mapgen.config import Settings
from py_mapgen.config.heightmap_templates import TEMPLATES, get_template, list_templates, pick_template
from py_mapgen.core.alea_prng import AleaPRNG
from py_mapgen.core.heightmap_generator import parse_template


class TestTemplateCatalog:
    """Test the built-in heightmap templates."""

    def test_catalog_order(self):
        assert list_templates() == [
            "volcano", "highIsland", "lowIsland", "continents", "archipelago", "atoll",
            "mediterranean", "peninsula", "pangea", "isthmus", "shattered", "taklamakan",
            "oldWorld", "fractious",
        ]

    def test_weights(self):
        weights = {key: t.probability for key, t in TEMPLATES.items()}
        assert weights["highIsland"] == 19
        assert weights["archipelago"] == 18
        assert weights["atoll"] == 1
        assert sum(weights.values()) == 100

    @pytest.mark.parametrize("key", list(TEMPLATES))
    def test_every_template_parses(self, key):
        assert parse_template(TEMPLATES[key].steps)

    def test_lookup_by_key(self):
        assert get_template("oldWorld").name == "Old World"

    def test_lookup_by_name(self):
        assert get_template("old world").key == "oldWorld"
        assert get_template("High Island").key == "highIsland"

    def test_unknown(self):
        with pytest.raises(KeyError):
            get_template("moon")

    def test_pick_is_seeded(self):
        first = [pick_template(AleaPRNG("pick")).key for _ in range(3)]
        assert first == [pick_template(AleaPRNG("pick")).key for _ in range(3)]
        assert first[0] in TEMPLATES

    def test_pick_uses_one_draw(self):
        prng = AleaPRNG("pick")
        pick_template(prng)
        assert prng.call_count == 1


class TestSettings:
    """Test environment driven settings."""

    def test_defaults(self):
        config = Settings(_env_file=None)
        assert config.default_cells == 10000
        assert config.max_cells == 100000
        assert config.default_template == ""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("MAPGEN_MAX_CELLS", "5000")
        monkeypatch.setenv("MAPGEN_LOG_FORMAT", "plain")
        config = Settings(_env_file=None)
        assert config.max_cells == 5000
        assert config.log_format == "plain"
