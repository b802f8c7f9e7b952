"""
Tests for config.json and session.json loading.
"""

import json

import pytest

from ticketwar.config import AcquisitionConfig, ConfigError, load_config, load_session
from ticketwar.extraction import DEFAULT_EXCLUDED_IDS
from ticketwar.queue_gate import DEFAULT_QUEUE_MARKERS


def write(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(json.dumps(data) if not isinstance(data, str) else data, encoding="utf-8")
    return path


class TestAcquisitionConfig:
    def test_defaults(self, config):
        assert config.settings.headless is False
        assert config.settings.poll_interval_ms == 100
        assert config.settings.poll_interval == pytest.approx(0.1)
        assert config.settings.timeout == 30000
        assert config.settings.queue_markers == list(DEFAULT_QUEUE_MARKERS)
        assert config.settings.excluded_ids == list(DEFAULT_EXCLUDED_IDS)
        assert config.payment.category == "Virtual Account"
        assert config.payment.method == "BCA"
        assert config.payment.fallback_index == 1

    def test_camel_case_keys(self, config_data):
        config_data["settings"] = {"pollIntervalMs": 250, "trackingIds": ["999"], "headless": True}
        config_data["payment"] = {"method": "Mandiri", "fallbackIndex": 0}

        config = AcquisitionConfig.model_validate(config_data)

        assert config.settings.poll_interval == pytest.approx(0.25)
        assert config.settings.excluded_ids == ["999"]
        assert config.payment.method == "Mandiri"
        assert config.payment.fallback_index == 0

    def test_config_is_immutable(self, config):
        with pytest.raises(Exception):
            config.ticket_amount = 5

    def test_numeric_phone_rejected(self, config_data):
        config_data["personalData"]["phone"] = 81234567890

        with pytest.raises(ValueError):
            AcquisitionConfig.model_validate(config_data)

    @pytest.mark.parametrize("gender,expected", [("Male", "male"), (" female ", "female")])
    def test_gender_normalized(self, config_data, gender, expected):
        config_data["personalData"]["gender"] = gender

        assert AcquisitionConfig.model_validate(config_data).personal_data.gender == expected

    @pytest.mark.parametrize("field,value", [
        ("gender", "other"),
        ("dob", "17-08-1995"),
        ("dob", "1995-02-30"),
    ])
    def test_invalid_personal_data(self, config_data, field, value):
        config_data["personalData"][field] = value

        with pytest.raises(ValueError):
            AcquisitionConfig.model_validate(config_data)

    def test_birth_date(self, config_data):
        config_data["personalData"]["dob"] = "1995-08-17"

        birth = AcquisitionConfig.model_validate(config_data).personal_data.birth_date

        assert (birth.year, birth.month, birth.day) == (1995, 8, 17)

    def test_ticket_amount_must_be_positive(self, config_data):
        config_data["ticketAmount"] = 0

        with pytest.raises(ValueError):
            AcquisitionConfig.model_validate(config_data)

    def test_target_url_scheme(self, config_data):
        config_data["targetUrl"] = "loket.com/event/x"

        with pytest.raises(ValueError):
            AcquisitionConfig.model_validate(config_data)

    def test_widget_urls_expand_slug(self, config_data):
        config_data["settings"] = {"widgetUrls": ["https://widget.loket.com/widget/{slug}"]}

        config = AcquisitionConfig.model_validate(config_data)

        assert config.widget_urls() == ["https://widget.loket.com/widget/konser-akbar-2026"]

    def test_widget_urls_without_event_path(self, config_data):
        config_data["targetUrl"] = "https://www.loket.com/"
        config_data["settings"] = {"widgetUrls": ["https://widget.loket.com/widget/{slug}"]}

        assert AcquisitionConfig.model_validate(config_data).widget_urls() == []


class TestLoading:
    def test_load_config(self, tmp_path, config_data):
        config = load_config(write(tmp_path, "config.json", config_data))

        assert config.category_keywords == ["VIP", "GOLD"]
        assert config.ticket_amount == 2

    def test_missing_config(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "config.json")

    def test_invalid_json(self, tmp_path):
        with pytest.raises(ConfigError, match="not valid JSON"):
            load_config(write(tmp_path, "config.json", "{targetUrl:"))

    def test_validation_error_names_file(self, tmp_path, config_data):
        del config_data["personalData"]
        path = write(tmp_path, "config.json", config_data)

        with pytest.raises(ConfigError, match="config.json is invalid"):
            load_config(path)

    def test_load_session(self, tmp_path):
        state = {"cookies": [{"name": "sid", "value": "x", "domain": ".loket.com", "path": "/"}], "origins": []}

        assert load_session(write(tmp_path, "session.json", state)) == state

    def test_session_without_cookies(self, tmp_path):
        with pytest.raises(ConfigError):
            load_session(write(tmp_path, "session.json", ["not", "a", "state"]))
