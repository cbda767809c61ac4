import pytest
from pydantic import ValidationError

from pytainers.MODELS.settings import RuntimeSettings, load_settings


def test_defaults_without_environment(tmp_path):
    settings = load_settings(env_file=str(tmp_path / "missing.env"), environ={})
    assert settings == RuntimeSettings()
    assert settings.wait_policy.timeout == 60.0


def test_environment_overrides_env_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("PYTAINERS_ENGINE=podman\nPYTAINERS_WAIT_TIMEOUT=5\nOTHER=1\n")
    settings = load_settings(env_file=str(env_file), environ={"PYTAINERS_WAIT_TIMEOUT": "9.5",
                                                            "PYTAINERS_KEEP": "1"})
    assert settings.engine == "podman"
    assert settings.wait_timeout == 9.5
    assert settings.keep is True


def test_blank_engine_means_auto_detection():
    assert load_settings(environ={"PYTAINERS_ENGINE": " "}).engine is None


def test_unknown_keys_are_ignored_and_bad_values_rejected():
    assert load_settings(environ={"PYTAINERS_SOMETHING": "x"}) == RuntimeSettings()
    with pytest.raises(ValidationError):
        load_settings(environ={"PYTAINERS_ENGINE": "lxc"})
