import dataclasses
import json
from pathlib import Path

import pytest

from minifypix.errors import ConfigurationError
from minifypix.settings import (
    DEFAULT_IMAGE_TYPES,
    GifOptions,
    JpegOptions,
    OptimizationConfig,
    PngOptions,
    RunSettings,
    load_config,
    merge_options,
)


class TestMergeOptions:
    def test_no_overrides_returns_defaults(self):
        assert merge_options(JpegOptions(), None) == JpegOptions()
        assert merge_options(JpegOptions(), {}) == JpegOptions()

    def test_leaf_override(self):
        merged = merge_options(JpegOptions(), {"quality": 70})

        assert merged == JpegOptions(quality=70, progressive=True, arithmetic=False)

    def test_values_are_coerced(self):
        merged = merge_options(GifOptions(), {"optimizationLevel": "3", "interlaced": "true"})

        assert merged.optimization_level == 3
        assert merged.interlaced is True

    def test_sequence_replaced_wholesale(self):
        merged = merge_options(PngOptions(), {"quality": [0.5, 0.6]})

        assert merged.quality == (0.5, 0.6)
        assert merged.speed == 1

    @pytest.mark.parametrize(
        "defaults, overrides",
        [
            (JpegOptions(), {"quality": 0}),
            (JpegOptions(), {"quality": "high"}),
            (PngOptions(), {"quality": 0.5}),
            (PngOptions(), {"speed": 12}),
            (GifOptions(), {"colors": 1}),
            (GifOptions(), {"optimizationLevel": 4}),
        ],
    )
    def test_invalid_values(self, defaults, overrides):
        with pytest.raises(ConfigurationError):
            merge_options(defaults, overrides)


class TestOptimizationConfig:
    def test_is_immutable(self):
        config = OptimizationConfig(jpg={"quality": 70})

        with pytest.raises(dataclasses.FrozenInstanceError):
            config.target = Path("x")
        with pytest.raises(TypeError):
            config.jpg["quality"] = 10

    def test_does_not_alias_caller_dicts(self):
        overrides = {"quality": 70}
        config = OptimizationConfig(jpg=overrides)
        overrides["quality"] = 10

        assert config.overrides()["jpg"] == {"quality": 70}

    def test_target_becomes_path(self):
        assert OptimizationConfig(target="dist/images").target == Path("dist/images")


class TestRunSettings:
    def test_defaults(self):
        s = RunSettings.from_mapping({})

        assert s.destination is None
        assert s.exclude == ("node_modules",)
        assert s.status == "changed"
        assert s.image_types == DEFAULT_IMAGE_TYPES
        assert s.workers is None

    def test_full_mapping(self):
        s = RunSettings.from_mapping(
            {
                "destination": "assets",
                "exclude": "vendor",
                "status": "staged",
                "imageTypes": [".png"],
                "target": "dist",
                "jpg": {"quality": 80},
                "workers": 2,
            }
        )

        assert s.destination == Path("assets")
        assert s.exclude == ("vendor",)
        assert s.status == "staged"
        assert s.image_types == (".png",)
        config = s.optimization_config()
        assert config.target == Path("dist")
        assert dict(config.jpg) == {"quality": 80}

    def test_nested_options_block(self):
        s = RunSettings.from_mapping({"options": {"png": {"speed": 3}}})

        assert dict(s.png) == {"speed": 3}

    def test_unsupported_image_types_fall_back(self):
        s = RunSettings.from_mapping({"imageTypes": [".png", ".bmp"]})

        assert s.image_types == DEFAULT_IMAGE_TYPES

    @pytest.mark.parametrize(
        "data",
        [
            {"status": "everything"},
            {"workers": 0},
            {"jpg": 90},
        ],
    )
    def test_invalid(self, data):
        with pytest.raises(ConfigurationError):
            RunSettings.from_mapping(data)


class TestLoadConfig:
    def test_nothing_found(self, tmp_path):
        assert load_config(tmp_path) == {}

    def test_config_file_wins_over_package_json(self, tmp_path):
        (tmp_path / "minifypix.config.json").write_text(json.dumps({"status": "staged"}))
        (tmp_path / "package.json").write_text(json.dumps({"minifyPix": {"status": "changed"}}))

        assert load_config(tmp_path) == {"status": "staged"}

    def test_package_json_key(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({"name": "site", "minifyPix": {"target": "dist"}}))

        assert load_config(tmp_path) == {"target": "dist"}

    def test_package_json_without_key(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({"name": "site"}))

        assert load_config(tmp_path) == {}

    def test_explicit_file(self, tmp_path):
        (tmp_path / "custom.json").write_text(json.dumps({"workers": 3}))

        assert load_config(tmp_path, Path("custom.json")) == {"workers": 3}

    def test_explicit_file_missing(self, tmp_path):
        with pytest.raises(ConfigurationError, match="config file not found"):
            load_config(tmp_path, Path("custom.json"))

    def test_invalid_json(self, tmp_path):
        (tmp_path / "minifypix.config.json").write_text("{not json")

        with pytest.raises(ConfigurationError):
            load_config(tmp_path)
