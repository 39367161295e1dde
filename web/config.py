from livetr.src.config import (
    CLIP_QUALITIES, DEVICE_CHOICES, VALID_LANGUAGES, VALID_MODELS,
    SessionSettings, initialize_config, settings_from_config,
)

WHISPER_MODELS = list(VALID_MODELS)
LANGUAGES = list(VALID_LANGUAGES)


class WebSettings:
    """Mutable runtime settings stored in app.state.settings."""

    def __init__(self, session_settings: SessionSettings = None):
        if session_settings is None:
            session_settings = settings_from_config(initialize_config())
        self.workdir: str = session_settings.workdir
        self.whisper_model: str = session_settings.model
        self.language: str = session_settings.language
        self.device: str = session_settings.device or "auto"
        self.clip_quality: str = session_settings.clip_quality
        self._session_settings = session_settings

    def to_session_settings(self) -> SessionSettings:
        settings = self._session_settings
        settings.workdir = self.workdir
        settings.model = self.whisper_model
        settings.language = self.language
        settings.device = None if self.device == "auto" else self.device
        settings.clip_quality = self.clip_quality
        return settings

    def to_dict(self) -> dict:
        return {
            "workdir": self.workdir,
            "whisper_model": self.whisper_model,
            "language": self.language,
            "device": self.device,
            "clip_quality": self.clip_quality,
        }


def options() -> dict:
    return {
        "models": WHISPER_MODELS,
        "languages": LANGUAGES,
        "clip_qualities": list(CLIP_QUALITIES),
        "devices": list(DEVICE_CHOICES),
    }
