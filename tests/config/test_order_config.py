"""Configuration loading: YAML set + environment -> OrderKernelConfig -> KernelSettings.

Covers the shipped default set, environment resolution of secrets and
producer credentials, and rejection of invalid values.
"""
from __future__ import annotations

import copy
from decimal import Decimal

import pytest
import yaml

from order_config import get_active_config
from order_config.bridges import kernel_settings_from_config
from order_config.loader import REQUIRED_SECTIONS, load_yaml_file, parse_config
from order_kernel.exceptions import ConfigurationError

MINIMAL = {
    "shop": {"order_number_prefix": "TEST"},
    "accounting": {"technology_take_percent": "12.5"},
    "producer_costs": {"KOL-250": 540},
    "fulfillment": {"stuck_pending_after_minutes": 30},
    "producers": {
        "kiendler": {
            "display_name": "Kiendler",
            "api_url_env": "KIENDLER_API_URL",
            "api_key_env": "KIENDLER_API_KEY",
            "email_env": "KIENDLER_EMAIL",
        },
    },
}


def _with(path: str, value):
    data = copy.deepcopy(MINIMAL)
    section, key = path.split(".")
    data[section][key] = value
    return data


class TestDefaultSet:
    """The shipped ``sets/default.yaml``."""

    def test_loads_without_environment(self):
        config = get_active_config(environ={})

        assert config.shop.order_number_prefix == "AIGG"
        assert config.accounting.technology_take_percent == Decimal("10")
        assert config.producer_costs["KOL-250"] == 540
        assert [p.slug for p in config.producers] == ["kiendler", "hernach"]
        assert config.webhooks.signing_secret is None
        assert config.database.url == config.database.default_url

    def test_environment_resolves_secrets_and_endpoints(self):
        config = get_active_config(environ={
            "PAYMENT_WEBHOOK_SECRET": "whsec_1",
            "DATABASE_URL": "postgresql://db/orders",
            "KIENDLER_API_URL": "https://api.kiendler.example",
            "KIENDLER_API_KEY": "kd-key",
            "HERNACH_EMAIL": "office@hernach.example",
        })

        assert config.webhooks.signing_secret == "whsec_1"
        assert config.database.url == "postgresql://db/orders"
        kiendler, hernach = config.producers
        assert kiendler.api_url == "https://api.kiendler.example"
        assert kiendler.api_key == "kd-key"
        assert hernach.contact_email == "office@hernach.example"
        assert hernach.api_key is None

    def test_secret_not_in_repr(self):
        config = get_active_config(environ={"KIENDLER_API_KEY": "kd-key", "PAYMENT_WEBHOOK_SECRET": "whsec_1"})
        assert "kd-key" not in repr(config)
        assert "whsec_1" not in repr(config)

    def test_unknown_set(self):
        with pytest.raises(FileNotFoundError):
            get_active_config("does-not-exist", environ={})

    def test_custom_directory(self, tmp_path):
        (tmp_path / "staging.yaml").write_text(yaml.safe_dump(MINIMAL), encoding="utf-8")

        config = get_active_config("staging", config_dir=tmp_path, environ={})

        assert config.shop.order_number_prefix == "TEST"
        assert config.source.endswith("staging.yaml")
        assert load_yaml_file(tmp_path / "staging.yaml") == MINIMAL


class TestBridge:
    def test_kernel_settings(self):
        config = parse_config(MINIMAL, {"KIENDLER_EMAIL": "k@example.at"})

        settings = kernel_settings_from_config(config)

        assert settings.order_number_prefix == "TEST"
        assert settings.technology_take_percent == Decimal("12.5")
        assert settings.stuck_pending_after_minutes == 30
        assert settings.producer_cost_for("KOL-250") == 540
        (producer,) = settings.builtin_producers
        assert producer.contact_email == "k@example.at"
        assert not producer.is_api_mode

    def test_api_mode_needs_url_and_key(self):
        config = parse_config(MINIMAL, {"KIENDLER_API_URL": "https://k.example"})
        (producer,) = kernel_settings_from_config(config).builtin_producers
        assert not producer.is_api_mode


class TestValidation:
    @pytest.mark.parametrize("section", REQUIRED_SECTIONS)
    def test_missing_section(self, section):
        data = copy.deepcopy(MINIMAL)
        del data[section]
        with pytest.raises(ConfigurationError, match=section):
            parse_config(data, {})

    @pytest.mark.parametrize("cents", [5.4, "540", -1, True])
    def test_producer_cost_must_be_integer_cents(self, cents):
        with pytest.raises(ConfigurationError):
            parse_config(_with("producer_costs.KOL-250", cents), {})

    def test_empty_producer_costs(self):
        data = copy.deepcopy(MINIMAL)
        data["producer_costs"] = {}
        with pytest.raises(ConfigurationError):
            parse_config(data, {})

    @pytest.mark.parametrize("percent", ["-1", "100.01", "ten"])
    def test_take_percent_range(self, percent):
        with pytest.raises(ConfigurationError):
            parse_config(_with("accounting.technology_take_percent", percent), {})

    @pytest.mark.parametrize("percent", ["0", "100"])
    def test_take_percent_bounds_accepted(self, percent):
        config = parse_config(_with("accounting.technology_take_percent", percent), {})
        assert config.accounting.technology_take_percent == Decimal(percent)

    @pytest.mark.parametrize("minutes", [0, -5, "60"])
    def test_positive_fulfillment_values(self, minutes):
        with pytest.raises(ConfigurationError):
            parse_config(_with("fulfillment.stuck_pending_after_minutes", minutes), {})

    def test_section_must_be_mapping(self):
        data = copy.deepcopy(MINIMAL)
        data["shop"] = ["AIGG"]
        with pytest.raises(ConfigurationError):
            parse_config(data, {})
