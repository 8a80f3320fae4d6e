"""Post-processing of downloaded episodes: ffmpeg transcoding and exec hooks."""

import logging
import shlex
import shutil
import subprocess
from pathlib import Path

from mutagen import MutagenError
from mutagen.mp3 import MP3

from podgrab.exceptions import HookError, PostProcessError
from podgrab.models import Feed, SelectedEntry

logger = logging.getLogger(__name__)


def ffmpeg_path() -> str:
    """Resolve ffmpeg: system PATH first, then bundled imageio-ffmpeg fallback."""
    path = shutil.which("ffmpeg")
    if path:
        return path
    try:
        import imageio_ffmpeg
        return imageio_ffmpeg.get_ffmpeg_exe()
    except (ImportError, RuntimeError):
        return "ffmpeg"


def has_ffmpeg() -> bool:
    """Check that the resolved ffmpeg binary actually runs."""
    try:
        result = subprocess.run(
            [ffmpeg_path(), "-version"], capture_output=True, timeout=10
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


def mp3_tags(feed: Feed, item: SelectedEntry) -> dict[str, str]:
    """ID3 tags written by --add-mp3-metadata, without empty values."""
    entry = item.entry
    album = feed.title or ""
    tags = {
        "album": album,
        "artist": entry.itunes.get("author") or entry.creator or "",
        "title": entry.title or "",
        "track": str(entry.itunes.get("episode") or item.episode_number(feed)),
        "date": entry.published.strftime("%Y-%m-%d") if entry.published else "",
        "album_artist": album,
    }
    return {k: v for k, v in tags.items() if v}


def build_ffmpeg_command(
    input_path: Path,
    output_path: Path,
    bitrate: str | None = None,
    mono: bool = False,
    tags: dict[str, str] | None = None,
) -> list[str]:
    cmd = [ffmpeg_path(), "-loglevel", "quiet", "-i", str(input_path)]
    if bitrate:
        cmd += ["-b:a", bitrate]
    if mono:
        cmd += ["-ac", "1"]
    if tags is not None:
        cmd += ["-map_metadata", "0"]
        for key, value in tags.items():
            cmd += ["-metadata", f"{key}={value}"]
        cmd += ["-codec", "copy"]
    cmd += ["-y", str(output_path)]
    return cmd


def run_ffmpeg(
    feed: Feed,
    item: SelectedEntry,
    output_path: Path,
    bitrate: str | None = None,
    mono: bool = False,
    add_mp3_metadata: bool = False,
) -> None:
    """Re-encode or re-tag an .mp3 in place.

    ffmpeg writes to ``<file>.tmp.mp3``; the result must parse as an MP3
    before it replaces the original.

    Raises:
        PostProcessError: If the file is not an .mp3 or ffmpeg fails.
    """
    output_path = Path(output_path)
    if not output_path.exists():
        return
    if output_path.suffix.lower() != ".mp3":
        raise PostProcessError("Not an .mp3 file. Unable to run ffmpeg.")

    tmp_output = Path(f"{output_path}.tmp.mp3")
    tags = mp3_tags(feed, item) if add_mp3_metadata else None
    cmd = build_ffmpeg_command(output_path, tmp_output, bitrate, mono, tags)

    logger.debug("Running %s", " ".join(shlex.quote(c) for c in cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        tmp_output.unlink(missing_ok=True)
        raise PostProcessError(f"Unable to run ffmpeg: {e}") from e
    if result.returncode != 0:
        tmp_output.unlink(missing_ok=True)
        raise PostProcessError(
            f"ffmpeg failed (exit {result.returncode}): {result.stderr[:500]}"
        )

    try:
        MP3(str(tmp_output))
    except MutagenError as e:
        tmp_output.unlink(missing_ok=True)
        raise PostProcessError(f"ffmpeg produced an unreadable MP3: {e}") from e

    tmp_output.replace(output_path)


def build_exec_command(command: str, output_path: Path, episode_filename: str) -> str:
    """Substitute ``{}`` (output path) and ``{filenameBase}`` in a hook command."""
    filename_base = episode_filename.rsplit(".", 1)[0] if "." in episode_filename else episode_filename
    return (
        command.replace("{}", shlex.quote(str(output_path)))
        .replace("{filenameBase}", shlex.quote(filename_base))
    )


def run_exec(command: str, output_path: Path, episode_filename: str) -> None:
    """Run the user's --exec command for a downloaded episode.

    Raises:
        HookError: If the command exits non-zero or cannot be started.
    """
    cmd = build_exec_command(command, output_path, episode_filename)
    try:
        result = subprocess.run(
            cmd, shell=True, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
        )
    except OSError as e:
        raise HookError(f"Unable to run exec command: {e}") from e
    if result.returncode != 0:
        raise HookError(f"Exec command exited with status {result.returncode}")
