"""AAC/M4A transcoding via FFmpeg subprocess."""

import asyncio
import logging
from pathlib import Path

from amusic.audio.binaries import get_tool_path
from amusic.settings import settings

logger = logging.getLogger(__name__)

OUTPUT_EXTENSION = ".m4a"


class TranscodeError(Exception):
    """Raised when transcoding fails."""


def generate_output_path(
    input_path: Path | str,
    output_directory: Path | str | None = None,
    preserve_structure: bool = False,
    base_path: Path | str | None = None,
) -> Path:
    """Compute where the encoded copy of ``input_path`` goes.

    With an output directory, structure preservation, and a base directory,
    the input's directory relative to the base is mirrored under the output
    directory. A base that is a file has no structure to mirror. Without an
    output directory the encoded file sits next to its source.

    Args:
        input_path: Source audio file.
        output_directory: Root for encoded files.
        preserve_structure: Mirror the source tree under ``output_directory``.
        base_path: Input root the relative structure is computed from.

    Returns:
        Output path with an ``.m4a`` extension.
    """
    input_path = Path(input_path)
    filename = input_path.stem + OUTPUT_EXTENSION

    if output_directory and preserve_structure and base_path:
        output_directory = Path(output_directory)
        base = Path(base_path)
        relative = Path()
        if base.is_dir() and input_path.parent.is_relative_to(base):
            relative = input_path.parent.relative_to(base)
        return output_directory / relative / filename

    out_dir = Path(output_directory) if output_directory else input_path.parent
    return out_dir / filename


async def encode_to_m4a(input_path: Path | str, output_path: Path | str) -> None:
    """Transcode an audio file to AAC in an M4A container.

    Tags are carried over from the source with ``-map_metadata``. An existing
    output file is never overwritten.

    Args:
        input_path: Source audio file.
        output_path: Destination ``.m4a`` path. Its directory must exist.

    Raises:
        TranscodeError: If ffmpeg is missing, fails, times out, or produces
            no output.
    """
    ffmpeg = get_tool_path("ffmpeg")
    timeout = settings.command_timeout_seconds

    try:
        proc = await asyncio.create_subprocess_exec(
            ffmpeg,
            "-hide_banner",
            "-loglevel",
            "error",
            "-n",
            "-i",
            str(input_path),
            "-map",
            "0:a:0",
            "-map_metadata",
            "0",
            "-c:a",
            "aac",
            "-b:a",
            settings.aac_bitrate,
            str(output_path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise TranscodeError(f"ffmpeg binary not found at '{ffmpeg}'") from None
    except OSError as exc:
        raise TranscodeError(f"Failed to run ffmpeg: {exc}") from exc

    try:
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        Path(output_path).unlink(missing_ok=True)
        raise TranscodeError(f"ffmpeg timed out after {timeout:.0f} seconds") from None

    if proc.returncode != 0:
        err_msg = stderr.decode(errors="replace").strip()
        raise TranscodeError(f"Encoding failed (exit {proc.returncode}): {err_msg}")

    if not Path(output_path).exists():
        raise TranscodeError("ffmpeg produced no output")

    logger.debug("Encoded %s -> %s", input_path, output_path)
