"""
File management service for promptvid.

Handles per-task working directories with path traversal protection.
Every artifact path is deterministic in (task_id, clip index), which is what
lets a re-run skip clips that were already rendered.
"""
from pathlib import Path

from promptvid.config import settings


class FileManager:
    """
    Manage filesystem artifacts for prompt-to-video tasks.

    Creates structured directories:
    - {base_dir}/{task_id}/images/ - Search images shared by every clip
    - {base_dir}/{task_id}/speech/ - Per-clip speech audio
    - {base_dir}/{task_id}/clips/ - Rendered clip videos
    - {base_dir}/{task_id}/output/ - Final merged video
    """

    SUBDIRS = ("images", "speech", "clips", "output")

    def __init__(self, base_dir: str | Path | None = None):
        """
        Initialize FileManager with base directory.

        Args:
            base_dir: Root directory for all task artifacts.
                     If None, uses settings.storage.work_dir
        """
        if base_dir is None:
            base_dir = settings.storage.work_dir

        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def get_task_dir(self, task_id: str) -> Path:
        """
        Get or create task directory with subdirectories.

        Raises:
            ValueError: If task_id creates path outside base_dir (traversal attack)
        """
        task_dir = (self.base_dir / str(task_id)).resolve()

        if task_dir == self.base_dir or not task_dir.is_relative_to(self.base_dir):
            raise ValueError("Invalid task path")

        task_dir.mkdir(exist_ok=True)
        for name in self.SUBDIRS:
            (task_dir / name).mkdir(exist_ok=True)

        return task_dir

    def save_image(self, task_id: str, index: int, data: bytes) -> Path:
        """Save search image ``index`` (0-based) for a task."""
        filepath = self.get_task_dir(task_id) / "images" / f"image_{index}.jpg"
        filepath.write_bytes(data)
        return filepath

    def save_speech(self, task_id: str, clip_index: int, data: bytes | memoryview) -> Path:
        """Save a clip's speech audio. Accepts a borrowed memoryview."""
        filepath = self.speech_path(task_id, clip_index)
        filepath.write_bytes(data)
        return filepath

    def speech_path(self, task_id: str, clip_index: int) -> Path:
        return self.get_task_dir(task_id) / "speech" / f"speech_{clip_index}.aac"

    def clip_path(self, task_id: str, clip_index: int) -> Path:
        """Deterministic render destination for clip ``clip_index`` (1-based)."""
        return self.get_task_dir(task_id) / "clips" / f"clip_{clip_index}.mp4"

    def get_output_path(self, task_id: str) -> Path:
        """Path of the final merged video, keyed by task id."""
        return self.get_task_dir(task_id) / "output" / f"{task_id}.mp4"
