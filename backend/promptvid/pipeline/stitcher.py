"""Merge rendered clip videos into the task's final video with ffmpeg.

Uses the concat demuxer with stream copy: every clip comes from the same
render service with identical fps/size/codec, so no re-encoding is needed.
A single clip is copied as-is.
"""

import asyncio
import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


class StitchError(RuntimeError):
    """ffmpeg could not produce the merged video."""


async def merge_clips(clip_paths: list[Path], output_path: Path) -> Path:
    """Concatenate clips (in the given order) into ``output_path``.

    Raises:
        StitchError: No clips, missing clip files, or ffmpeg failure.
    """
    if not clip_paths:
        raise StitchError("No rendered clips to merge")

    missing = [p for p in clip_paths if not p.exists()]
    if missing:
        raise StitchError(f"Missing clip files: {[str(p) for p in missing]}")

    logger.info(f"Merging {len(clip_paths)} clip(s) into {output_path}")
    try:
        if len(clip_paths) == 1:
            await asyncio.to_thread(_copy_single, clip_paths[0], output_path)
        else:
            await asyncio.to_thread(_stitch_concat_demuxer, clip_paths, output_path)
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.decode(errors="replace") if e.stderr else "No error output"
        logger.error(f"ffmpeg error: {stderr}")
        raise StitchError(f"Video merge failed: {stderr[:500]}") from e

    return output_path


def _copy_single(clip_path: Path, output_path: Path) -> None:
    subprocess.run(
        ["ffmpeg", "-y", "-i", str(clip_path), "-c", "copy", str(output_path)],
        check=True,
        capture_output=True,
    )


def _stitch_concat_demuxer(clip_paths: list[Path], output_path: Path) -> None:
    """Stitch videos using ffmpeg concat demuxer (hard cuts, stream copy)."""
    list_file = output_path.parent / "concat_list.txt"

    try:
        with open(list_file, "w") as f:
            for clip_path in clip_paths:
                # Absolute paths need -safe 0
                f.write(f"file '{clip_path.resolve()}'\n")

        subprocess.run(
            [
                "ffmpeg",
                "-y",
                "-f",
                "concat",
                "-safe",
                "0",
                "-i",
                str(list_file),
                "-c",
                "copy",
                str(output_path),
            ],
            check=True,
            capture_output=True,
        )

        logger.info(f"Concat demuxer merge complete: {output_path}")

    finally:
        if list_file.exists():
            list_file.unlink()
