"""ReplayGain calculation via the rsgain CLI.

rsgain is run in custom mode over an album's files (or a single file) and
writes the loudness tags itself. With ``-O`` it also prints a tab-separated
report which is parsed so per-album values can be handed to per-track
processing. Dry runs use the scan-only tag mode so nothing is written.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from amusic.audio.binaries import get_tool_path
from amusic.audio.formats import is_audio_file
from amusic.settings import settings

logger = logging.getLogger(__name__)

# Filename used by rsgain for the album summary row
_ALBUM_ROW = "Album"


@dataclass
class AlbumGain:
    album_gain: float
    album_peak: float


@dataclass
class ReplayGainResult:
    """Outcome of one rsgain invocation."""

    success: bool = False
    album: dict[Path, AlbumGain] = field(default_factory=dict)
    error: str | None = None


def _column_index(header: list[str], *names: str) -> int | None:
    normalized = [h.strip().lower() for h in header]
    for name in names:
        if name.lower() in normalized:
            return normalized.index(name.lower())
    return None


def parse_rsgain_output(stdout: str) -> AlbumGain | None:
    """Parse the album row from rsgain's tab-separated scan report.

    Per-track rows are ignored: rsgain has already written the track values
    into each file. Rows that do not parse are skipped.

    Args:
        stdout: Raw stdout from ``rsgain custom -O``.

    Returns:
        The album gain, or ``None`` if the report has no album row.
    """
    lines = [line for line in stdout.splitlines() if line.strip()]
    header_at = next((i for i, line in enumerate(lines) if "filename" in line.lower()), None)
    if header_at is None:
        logger.debug("rsgain output has no header row")
        return None

    header = lines[header_at].split("\t")
    name_col = _column_index(header, "Filename")
    gain_col = _column_index(header, "Gain (dB)", "Gain")
    peak_col = _column_index(header, "Peak")
    if name_col is None or gain_col is None or peak_col is None:
        logger.debug("rsgain header missing expected columns: %s", header)
        return None

    for line in lines[header_at + 1 :]:
        parts = line.split("\t")
        try:
            if parts[name_col].strip() != _ALBUM_ROW:
                continue
            return AlbumGain(album_gain=float(parts[gain_col]), album_peak=float(parts[peak_col]))
        except (IndexError, ValueError):
            logger.debug("Skipping unparseable rsgain line: %s", line)
    return None


async def calculate_replaygain(
    target: Path | str,
    files: list[Path] | None = None,
    *,
    dry_run: bool = False,
    quiet: bool = False,
) -> ReplayGainResult:
    """Calculate (and unless ``dry_run``, embed) ReplayGain values.

    A directory target is scanned in album mode over ``files`` (defaulting
    to the audio files directly inside it). A file target is scanned on its
    own in track mode.

    Args:
        target: Album directory or single audio file.
        files: Album member files, for directory targets.
        dry_run: Scan only; do not let rsgain write tags.
        quiet: Suppress informational log output.

    Returns:
        ReplayGainResult. Failures are reported through ``success`` and
        ``error``; this function does not raise for tool errors.
    """
    target = Path(target)
    album_mode = target.is_dir()
    if album_mode:
        scan_files = sorted(files) if files is not None else sorted(
            p for p in target.iterdir() if p.is_file() and is_audio_file(p)
        )
    else:
        scan_files = [target]

    result = ReplayGainResult()
    if not scan_files:
        result.error = f"No audio files to scan in {target}"
        return result

    if not quiet:
        logger.info(
            "Calculating ReplayGain for %s (%d file%s)",
            target,
            len(scan_files),
            "" if len(scan_files) == 1 else "s",
        )

    rsgain = get_tool_path("rsgain")
    args = ["custom"]
    if album_mode:
        args.append("-a")
    args.extend(["-O", "-s", "s" if dry_run else "i"])
    args.extend(str(f) for f in scan_files)

    timeout = settings.command_timeout_seconds
    try:
        proc = await asyncio.create_subprocess_exec(
            rsgain,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            result.error = f"rsgain timed out after {timeout:.0f} seconds"
            logger.warning("%s for %s", result.error, target)
            return result
    except FileNotFoundError:
        result.error = f"rsgain binary not found at '{rsgain}'"
        logger.error(result.error)
        return result
    except OSError as exc:
        result.error = f"Failed to run rsgain: {exc}"
        logger.error(result.error)
        return result

    if proc.returncode != 0:
        result.error = (
            f"rsgain exited with code {proc.returncode}: "
            f"{stderr_bytes.decode(errors='replace').strip()}"
        )
        logger.error("ReplayGain failed for %s: %s", target, result.error)
        return result

    album = parse_rsgain_output(stdout_bytes.decode(errors="replace"))
    result.success = True
    if album_mode and album is not None:
        result.album = {f: album for f in scan_files}
    return result
