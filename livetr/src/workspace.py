"""Filesystem layout of a live session working directory."""

import os
import shutil
from pathlib import Path
from typing import List, Optional, Union

RAW_CAPTURE_NAME = "live_download.ts"
SNAPSHOT_NAME = "fixed_current.ts"
CLIPS_DIR_NAME = "clips"
AUDIO_DIR_NAME = "audio"


class Workspace:
    """
    Paths shared by the ingestor, fixator, cycle engine and clip extractor.

    <root>/live_download.ts   raw capture (written by the capture process)
    <root>/fixed_current.ts   last fixed snapshot
    <root>/clips/             clip_<id>.mp4 and thumb_<id>.jpg
    <root>/audio/             transient audio extraction output
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).expanduser().resolve()
        self.raw_capture = self.root / RAW_CAPTURE_NAME
        self.snapshot = self.root / SNAPSHOT_NAME
        self.clips_dir = self.root / CLIPS_DIR_NAME
        self.audio_dir = self.root / AUDIO_DIR_NAME

    def ensure(self) -> "Workspace":
        """Create the directories if needed."""
        for d in (self.root, self.clips_dir, self.audio_dir):
            d.mkdir(parents=True, exist_ok=True)
        return self

    def clip_path(self, clip_id: str) -> Path:
        return self.clips_dir / f"clip_{clip_id}.mp4"

    def thumbnail_path(self, clip_id: str) -> Path:
        return self.clips_dir / f"thumb_{clip_id}.jpg"

    def clip_artifacts(self) -> List[Path]:
        if not self.clips_dir.is_dir():
            return []
        return sorted(p for p in self.clips_dir.iterdir() if p.is_file())

    def remove_raw_capture(self) -> bool:
        try:
            self.raw_capture.unlink()
            return True
        except FileNotFoundError:
            return False

    def reset_capture_files(self) -> None:
        """Remove the raw capture and snapshot left by a previous session."""
        for p in (self.raw_capture, self.snapshot):
            if p.exists():
                p.unlink()

    def clear_audio(self) -> int:
        """Remove transient audio output, return the number of files removed."""
        removed = 0
        if self.audio_dir.is_dir():
            for p in self.audio_dir.iterdir():
                if p.is_file():
                    p.unlink()
                    removed += 1
        return removed

    def free_bytes(self) -> Optional[int]:
        """Free space on the volume holding the workspace."""
        probe = self.root if self.root.exists() else self.root.parent
        try:
            return shutil.disk_usage(str(probe)).free
        except OSError:
            return None

    def resolve_clip_file(self, name: str) -> Optional[Path]:
        """Map a bare artifact filename to a path inside the clips directory."""
        if os.path.basename(name) != name:
            return None
        path = self.clips_dir / name
        return path if path.is_file() else None
