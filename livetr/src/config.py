"""
Configuration manager for livetr.

Handles reading, writing, and editing livetr.conf settings, and turns them
into the SessionSettings used to build a live session.
"""

import configparser
import os
import platform
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


# Base directory is the livetr package directory
BASE_DIR = Path(__file__).parent.parent
CONF_DIR = BASE_DIR / "conf"
CONF_FILE = CONF_DIR / "livetr.conf"

# Fastest to most accurate
VALID_MODELS = ("tiny", "base", "small", "medium", "large")
VALID_LANGUAGES = (
    "auto", "en", "es", "fr", "de", "it", "pt", "nl", "pl",
    "ru", "zh", "ja", "ko", "ar", "hi", "tr",
)
CLIP_QUALITIES = ("fast", "high")
DEVICE_CHOICES = ("auto", "cuda", "cpu")

DEFAULTS = {
    "Directories": {
        "workdir": str(BASE_DIR / "temp"),
        "logs_dir": str(BASE_DIR / "logs"),
    },
    "Model": {"model": "base"},
    "Language": {"language": "auto"},
    "Processing": {"device": "auto"},
    "Clips": {"quality": "high"},
    "Timing": {
        "fixation_interval": "10",
        "fixation_staleness": "30",
        "cycle_interval": "3",
        "health_interval": "30",
    },
}


@dataclass
class SessionSettings:
    """Everything needed to assemble a LiveSession."""
    workdir: str = str(BASE_DIR / "temp")
    logs_dir: Optional[str] = None
    model: str = "base"
    language: str = "auto"
    device: Optional[str] = None
    clip_quality: str = "high"
    fixation_interval: float = 10.0
    fixation_staleness: float = 30.0
    cycle_interval: float = 3.0
    health_interval: float = 30.0


def check_ffmpeg() -> bool:
    """Check if ffmpeg is installed. If not, print install instructions and exit."""
    if shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None:
        return True

    system = platform.system().lower()
    print("ERROR: ffmpeg/ffprobe are not installed or not found in PATH.")
    print("")
    if system == "darwin":
        print("  Install with Homebrew:")
        print("    brew install ffmpeg")
    elif system == "linux":
        print("  Install ffmpeg using your package manager, e.g.:")
        print("    sudo apt install ffmpeg")
        print("    sudo dnf install ffmpeg")
    elif system == "windows":
        print("  Download from: https://ffmpeg.org/download.html")
        print("  Or install with: winget install ffmpeg")
    else:
        print("  Download from: https://ffmpeg.org/download.html")
    print("")
    sys.exit(1)


def ensure_conf_dir_and_file():
    """Ensure conf directory and livetr.conf exist, creating them if needed."""
    created_dir = False
    created_file = False

    if not CONF_DIR.exists():
        CONF_DIR.mkdir(parents=True, exist_ok=True)
        created_dir = True

    if not CONF_FILE.exists():
        CONF_FILE.touch()
        created_file = True

    return created_dir, created_file


def load_config(path: Optional[Path] = None) -> configparser.ConfigParser:
    """Load the config file."""
    path = path or CONF_FILE
    config = configparser.ConfigParser()
    if path.exists():
        config.read(str(path))
    return config


def save_config(config: configparser.ConfigParser, path: Optional[Path] = None):
    """Save the config file."""
    path = path or CONF_FILE
    with open(path, "w") as f:
        config.write(f)


def apply_defaults(config: configparser.ConfigParser) -> bool:
    """Fill in missing sections and keys. Returns True if anything was added."""
    changed = False
    for section, values in DEFAULTS.items():
        if not config.has_section(section):
            config.add_section(section)
            changed = True
        for key, value in values.items():
            if not config.get(section, key, fallback=""):
                config.set(section, key, value)
                changed = True
    return changed


def display_config(config: configparser.ConfigParser):
    """Display the current configuration."""
    print("")
    print("=" * 55)
    print("  livetr Configuration (livetr.conf)")
    print("=" * 55)
    print(f"  Workdir:    {config.get('Directories', 'workdir', fallback='N/A')}")
    print(f"  Logs dir:   {config.get('Directories', 'logs_dir', fallback='N/A')}")
    print(f"  Model:      {config.get('Model', 'model', fallback='N/A')}")
    print(f"  Language:   {config.get('Language', 'language', fallback='N/A')}")
    print(f"  Device:     {config.get('Processing', 'device', fallback='N/A')}")
    print(f"  Clip tier:  {config.get('Clips', 'quality', fallback='N/A')}")
    print("=" * 55)
    print("")


def initialize_config(path: Optional[Path] = None) -> configparser.ConfigParser:
    """Load livetr.conf, writing defaults for anything missing."""
    if path is None:
        ensure_conf_dir_and_file()
    config = load_config(path)
    if apply_defaults(config):
        save_config(config, path)
    return config


def configure_settings(config: configparser.ConfigParser) -> configparser.ConfigParser:
    """
    Walk through every entry in livetr.conf and let the user change values.

    Current values are shown as defaults; pressing Enter keeps them.
    """
    print("")
    print("=" * 55)
    print("  livetr Configuration Editor")
    print("=" * 55)

    for section in config.sections():
        print(f"\n[{section}]")
        for key in config.options(section):
            current = config.get(section, key, fallback="")
            if current:
                raw = input(f"  {key} [{current}]: ").strip()
                if not raw:
                    raw = current
            else:
                raw = input(f"  {key}: ").strip()
            config.set(section, key, raw)

    print("")
    return config


def get_effective_device(config: configparser.ConfigParser) -> Optional[str]:
    """Get the device setting, returning None for 'auto' (let whisper decide)."""
    device = config.get("Processing", "device", fallback="auto")
    if device == "auto":
        return None
    return device


def get_effective_language(config: configparser.ConfigParser) -> str:
    """Get the language setting, falling back to 'auto' for unknown values."""
    lang = config.get("Language", "language", fallback="auto").strip().lower()
    if lang not in VALID_LANGUAGES:
        return "auto"
    return lang


def settings_from_config(
    config: configparser.ConfigParser,
    cli_model: Optional[str] = None,
    cli_language: Optional[str] = None,
    cli_workdir: Optional[str] = None,
) -> SessionSettings:
    """Build SessionSettings from the config; CLI values override file values."""
    model = cli_model or config.get("Model", "model", fallback="base")
    if model not in VALID_MODELS:
        model = "base"
    quality = config.get("Clips", "quality", fallback="high")
    if quality not in CLIP_QUALITIES:
        quality = "high"

    workdir = cli_workdir or config.get("Directories", "workdir", fallback=DEFAULTS["Directories"]["workdir"])
    return SessionSettings(
        workdir=os.path.abspath(os.path.expanduser(workdir)),
        logs_dir=config.get("Directories", "logs_dir", fallback=None) or None,
        model=model,
        language=cli_language or get_effective_language(config),
        device=get_effective_device(config),
        clip_quality=quality,
        fixation_interval=config.getfloat("Timing", "fixation_interval", fallback=10.0),
        fixation_staleness=config.getfloat("Timing", "fixation_staleness", fallback=30.0),
        cycle_interval=config.getfloat("Timing", "cycle_interval", fallback=3.0),
        health_interval=config.getfloat("Timing", "health_interval", fallback=30.0),
    )
