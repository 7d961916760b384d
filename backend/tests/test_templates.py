"""Tests for the effect template catalog and model selection."""

import pytest

from wallcraft.services.templates import (
    EFFECT_CATEGORY_LABELS,
    MODEL_I2V_PLUS,
    MODEL_I2V_TURBO,
    MODEL_KF2V_PLUS,
    TEMPLATES,
    GenerationMode,
    default_model,
    get_template,
    normalize_resolution,
    resolve_model,
)


class TestCatalog:

    def test_catalog_size_and_unique_ids(self):
        assert len(TEMPLATES) == 31
        assert len({t.template for t in TEMPLATES}) == 31

    def test_every_category_has_a_label(self):
        assert {t.category for t in TEMPLATES} <= set(EFFECT_CATEGORY_LABELS)

    def test_keyframe_templates_only_support_kf2v(self):
        keyframe = [t for t in TEMPLATES if t.type == GenerationMode.KF2V]
        assert {t.template for t in keyframe} == {"hanfu-1", "solaron", "magazine", "mech1", "mech2"}
        assert all(t.supported_models == [MODEL_KF2V_PLUS] for t in keyframe)

    def test_camel_case_serialization(self):
        payload = get_template("rotation").model_dump(by_alias=True, mode="json")
        assert payload["supportedModels"] == [MODEL_I2V_PLUS, MODEL_I2V_TURBO]
        assert payload["inputTip"]
        assert payload["type"] == "i2v"


class TestModelSelection:

    def test_prefers_turbo_when_supported(self):
        assert default_model(get_template("squish")) == MODEL_I2V_TURBO

    def test_falls_back_to_plus(self):
        assert default_model(get_template("melt")) == MODEL_I2V_PLUS

    def test_keyframe_template_forces_kf2v(self):
        assert resolve_model("solaron", MODEL_I2V_TURBO) == MODEL_KF2V_PLUS

    def test_keeps_requested_model_when_supported(self):
        assert resolve_model("rotation", MODEL_I2V_PLUS) == MODEL_I2V_PLUS

    def test_ignores_unsupported_request(self):
        assert resolve_model("dance1", MODEL_I2V_TURBO) == MODEL_I2V_PLUS

    def test_unknown_template(self):
        assert resolve_model("brand-new") == MODEL_I2V_PLUS
        assert resolve_model("brand-new", "wanx2.1-i2v-next") == "wanx2.1-i2v-next"


class TestResolution:

    @pytest.mark.parametrize("value,expected", [
        ("480P", "480P"),
        ("1080p", "1080P"),
        (" 720P ", "720P"),
        ("4K", "720P"),
        (None, "720P"),
        ("", "720P"),
    ])
    def test_normalize(self, value, expected):
        assert normalize_resolution(value) == expected
