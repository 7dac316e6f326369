"""
Test moderation configuration loading and overrides.
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from safeguard.core import config as config_module
from safeguard.core.config import ModerationConfig, get_moderation_config, load_config_file


def test_defaults():
    config = ModerationConfig()
    assert config.csam_confidence_floor == 0.1
    assert config.nudity.profile_photo == 0.6
    assert config.nudity.private_photo == 0.95
    assert config.text.hate_speech == 0.4
    assert config.review_triggers.report_threshold == 3
    assert config.report_max_attempts == 3


def test_overrides_deep_merge(monkeypatch):
    """Test that nested overrides keep sibling defaults."""
    monkeypatch.setattr(config_module.settings, "moderation_config_file", None)
    config = get_moderation_config({"nudity": {"profile_photo": 0.5}, "report_max_attempts": 5})
    assert config.nudity.profile_photo == 0.5
    assert config.nudity.private_photo == 0.95
    assert config.report_max_attempts == 5


def test_yaml_file_then_overrides(tmp_path, monkeypatch):
    path = tmp_path / "moderation.yaml"
    path.write_text(
        "text:\n"
        "  spam: 0.9\n"
        "detector_timeouts:\n"
        "  csam_detector: 2.5\n"
    )
    monkeypatch.setattr(config_module.settings, "moderation_config_file", str(path))

    config = get_moderation_config({"text": {"harassment": 0.6}})
    assert config.text.spam == 0.9
    assert config.text.harassment == 0.6
    assert config.timeout_for("csam_detector") == 2.5
    assert config.timeout_for("spam_classifier") == config.detector_timeout_seconds


def test_yaml_file_must_be_mapping(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        load_config_file(str(path))


def test_invalid_threshold_rejected(monkeypatch):
    monkeypatch.setattr(config_module.settings, "moderation_config_file", None)
    with pytest.raises(PydanticValidationError):
        get_moderation_config({"csam_confidence_floor": 1.5})
