"""Per-track processing pipeline.

A track goes through up to three stages, each enabled by its own option:

1. Encoding to M4A (lossless sources only unless lossy transcodes are forced)
2. ReplayGain (album values are computed once per album before dispatch)
3. AcoustID fingerprinting and tagging

A failing stage is recorded in the track's result and the remaining stages
still run, on the original file when encoding did not produce an output.
``process_track`` never raises.
"""

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from amusic.audio.encoding import TranscodeError, encode_to_m4a, generate_output_path
from amusic.audio.formats import is_lossless_format
from amusic.audio.replaygain import AlbumGain, calculate_replaygain
from amusic.audio.tags import TagCodec
from amusic.identify.acoustid import AcoustIDClient
from amusic.identify.tagging import ProcessResultStatus, process_acoustid_tagging
from amusic.settings import settings

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, Path], None]


class EncodeSkipReason(StrEnum):
    ALREADY_M4A = "already_m4a"
    LOSSY_FORMAT = "lossy_format"
    OUTPUT_EXISTS = "output_exists"


@dataclass
class TrackProcessingOptions:
    """Options bundle shared by every track of a run."""

    # Encoding
    encode: bool = False
    force_lossy_transcodes: bool = False
    output_directory: Path | None = None
    preserve_structure: bool = False
    base_path: Path | None = None

    # ReplayGain
    calculate_gain: bool = False
    album_gain_data: dict[Path, AlbumGain] | None = None

    # AcoustID
    process_acoustid: bool = False
    acoustid_api_key: str | None = None
    force_acoustid: bool = False

    # General
    quiet: bool = False
    dry_run: bool = False


@dataclass
class TrackProcessingResult:
    """Outcome of every stage for one track."""

    input_path: Path
    output_path: Path | None = None
    encoded: bool = False
    encoding_error: str | None = None
    encode_skip_reason: EncodeSkipReason | None = None
    replaygain_applied: bool = False
    replaygain_error: str | None = None
    acoustid_status: ProcessResultStatus | None = None
    acoustid_error: str | None = None
    duration_seconds: float = 0.0


async def _encode_stage(
    file_path: Path,
    options: TrackProcessingOptions,
    result: TrackProcessingResult,
    codec: TagCodec,
) -> Path:
    """Run the encode stage and return the path later stages should use."""
    if not is_lossless_format(file_path, codec) and not options.force_lossy_transcodes:
        result.encoding_error = "Cannot encode from lossy format without --force-lossy-transcodes"
        result.encode_skip_reason = EncodeSkipReason.LOSSY_FORMAT
        if not options.quiet:
            logger.info("Not encoding lossy source %s", file_path)
        return file_path

    output_path = generate_output_path(
        file_path,
        options.output_directory,
        options.preserve_structure,
        options.base_path,
    )
    result.output_path = output_path

    if output_path == file_path:
        result.encode_skip_reason = EncodeSkipReason.ALREADY_M4A
        if not options.quiet:
            logger.info("Skipping %s (already M4A format)", file_path)
        return file_path

    if output_path.exists():
        result.encode_skip_reason = EncodeSkipReason.OUTPUT_EXISTS
        if not options.quiet:
            logger.info("Skipping %s (output already exists: %s)", file_path, output_path)
        return file_path

    if options.dry_run:
        if not options.quiet:
            logger.info("DRY RUN: would encode %s -> %s", file_path, output_path)
        result.encoded = True
        return file_path

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        await encode_to_m4a(file_path, output_path)
    except (TranscodeError, OSError) as e:
        result.encoding_error = str(e)
        logger.error("Encoding failed for %s: %s", file_path, e)
        return file_path

    result.encoded = True
    if not options.quiet:
        logger.info("Encoded: %s", output_path)
    return output_path


async def process_track(
    file_path: Path | str,
    options: TrackProcessingOptions,
    *,
    codec: TagCodec,
    client: AcoustIDClient | None = None,
) -> TrackProcessingResult:
    """Process a single track through the enabled stages.

    Args:
        file_path: Audio file to process.
        options: Stage switches and settings.
        codec: Tag codec shared by the run.
        client: AcoustID client shared by the run.

    Returns:
        TrackProcessingResult with the outcome of each stage.
    """
    file_path = Path(file_path)
    result = TrackProcessingResult(input_path=file_path)
    started = time.perf_counter()
    working_path = file_path

    # Stage 1: encoding
    if options.encode:
        try:
            working_path = await _encode_stage(file_path, options, result, codec)
        except Exception as e:
            result.encoding_error = f"Unexpected error: {e}"
            logger.exception("Unexpected error encoding %s", file_path)

    # Stage 2: ReplayGain (album values computed before dispatch)
    if options.calculate_gain and options.album_gain_data is not None:
        if file_path in options.album_gain_data:
            result.replaygain_applied = True
            if not options.quiet:
                logger.info("ReplayGain data available for %s", file_path.name)

    # Stage 3: AcoustID
    if options.process_acoustid and options.acoustid_api_key:
        try:
            result.acoustid_status = await process_acoustid_tagging(
                working_path,
                options.acoustid_api_key,
                force=options.force_acoustid,
                quiet=options.quiet,
                dry_run=options.dry_run,
                codec=codec,
                client=client,
            )
        except Exception as e:
            result.acoustid_status = ProcessResultStatus.FAILED
            result.acoustid_error = str(e)
            logger.exception("AcoustID error for %s", working_path)

    result.duration_seconds = time.perf_counter() - started
    return result


async def batch_process_tracks(
    file_paths: Sequence[Path | str],
    options: TrackProcessingOptions,
    *,
    codec: TagCodec,
    client: AcoustIDClient | None = None,
    concurrency: int | None = None,
    on_progress: ProgressCallback | None = None,
) -> list[TrackProcessingResult]:
    """Process many tracks with at most ``concurrency`` in flight.

    Workers pull the next file from a shared cursor as soon as they finish
    one, so a slow track does not hold up a whole batch.

    Args:
        file_paths: Tracks to process.
        options: Options applied to every track.
        codec: Tag codec shared by the run.
        client: AcoustID client shared by the run.
        concurrency: Maximum tracks in flight (defaults to settings).
        on_progress: Called after each track as ``(processed, total, path)``.

    Returns:
        Results in the same order as ``file_paths``.
    """
    paths = [Path(p) for p in file_paths]
    total = len(paths)
    if total == 0:
        return []

    limit = max(1, concurrency or settings.default_concurrency)
    results: list[TrackProcessingResult | None] = [None] * total
    cursor = 0
    processed = 0

    async def _worker() -> None:
        nonlocal cursor, processed
        while cursor < total:
            index = cursor
            cursor += 1
            path = paths[index]
            results[index] = await process_track(path, options, codec=codec, client=client)
            processed += 1
            if on_progress is not None:
                on_progress(processed, total, path)

    await asyncio.gather(*(_worker() for _ in range(min(limit, total))))
    return [r for r in results if r is not None]


async def process_album(
    album_path: Path | str,
    files: Sequence[Path | str],
    options: TrackProcessingOptions,
    *,
    codec: TagCodec,
    client: AcoustIDClient | None = None,
    concurrency: int | None = None,
    on_progress: ProgressCallback | None = None,
) -> list[TrackProcessingResult]:
    """Process an album: ReplayGain once for the album, then every track.

    Args:
        album_path: Album directory.
        files: Album member files.
        options: Options applied to every track.
        codec: Tag codec shared by the run.
        client: AcoustID client shared by the run.
        concurrency: Maximum tracks in flight.
        on_progress: Per-track progress callback.

    Returns:
        One result per file, in input order.
    """
    album_path = Path(album_path)
    paths = [Path(f) for f in files]
    album_gain_data: dict[Path, AlbumGain] = {}
    gain_error: str | None = None

    if options.calculate_gain:
        if not options.quiet:
            logger.info("Calculating ReplayGain for album: %s", album_path)
        gain = await calculate_replaygain(
            album_path, paths, dry_run=options.dry_run, quiet=options.quiet
        )
        if gain.success:
            album_gain_data = gain.album
        else:
            gain_error = gain.error or "ReplayGain calculation failed"

    track_options = dataclasses.replace(options, album_gain_data=album_gain_data)
    results = await batch_process_tracks(
        paths,
        track_options,
        codec=codec,
        client=client,
        concurrency=concurrency,
        on_progress=on_progress,
    )

    if gain_error is not None:
        for r in results:
            r.replaygain_error = gain_error
    return results
