from __future__ import annotations

import configparser

from livetr.src.config import (
    get_effective_device,
    get_effective_language,
    initialize_config,
    load_config,
    settings_from_config,
)


def test_initialize_writes_defaults(tmp_path) -> None:
    path = tmp_path / "livetr.conf"
    path.touch()

    config = initialize_config(path)

    assert config.get("Model", "model") == "base"
    reloaded = load_config(path)
    assert reloaded.get("Clips", "quality") == "high"
    assert reloaded.getfloat("Timing", "cycle_interval") == 3.0


def test_existing_values_are_kept(tmp_path) -> None:
    path = tmp_path / "livetr.conf"
    path.write_text("[Model]\nmodel = small\n\n[Language]\nlanguage = ja\n")

    config = initialize_config(path)
    settings = settings_from_config(config)

    assert settings.model == "small"
    assert settings.language == "ja"


def test_cli_values_override_file(tmp_path) -> None:
    path = tmp_path / "livetr.conf"
    path.touch()
    config = initialize_config(path)

    settings = settings_from_config(
        config, cli_model="medium", cli_language="es", cli_workdir=str(tmp_path / "w")
    )

    assert settings.model == "medium"
    assert settings.language == "es"
    assert settings.workdir == str(tmp_path / "w")


def test_unknown_values_fall_back() -> None:
    config = configparser.ConfigParser()
    config.read_dict({
        "Model": {"model": "enormous"},
        "Language": {"language": "klingon"},
        "Processing": {"device": "auto"},
        "Clips": {"quality": "lossless"},
    })

    settings = settings_from_config(config)

    assert settings.model == "base"
    assert settings.language == "auto"
    assert settings.clip_quality == "high"
    assert get_effective_device(config) is None
    assert get_effective_language(config) == "auto"
