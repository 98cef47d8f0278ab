"""Command-line interface.

Usage:
    amusic [tag] [--force] [--dry-run] [--show-tags] FILES...
    amusic easy LIBRARY
    amusic encode [--force-lossy-transcodes] [-o DIR] [--flatten-output] FILES...
    amusic process [--encode] [--replay-gain] [--acoust-id] [--singles PATTERN] PATHS...

Individual file failures never change the exit status; only configuration
problems (missing tools, API key, or input directory) exit non-zero.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn
from rich.table import Table

from amusic import __version__
from amusic.audio.binaries import MissingToolError, ensure_tool_exists
from amusic.audio.tags import AcoustIDTags, ReplayGainTags, TagCodec, TagCodecError
from amusic.identify.acoustid import AcoustIDClient
from amusic.identify.tagging import ProcessResultStatus, process_acoustid_tagging
from amusic.pipeline.folders import (
    album_display_name,
    analyze_folder_structure,
    collect_audio_files,
)
from amusic.pipeline.pool import TrackProcessorPool
from amusic.pipeline.stats import EncodingStats, ProcessingStats, ProcessingSummary
from amusic.pipeline.track import (
    TrackProcessingOptions,
    TrackProcessingResult,
    batch_process_tracks,
    process_album,
)
from amusic.settings import settings

logger = logging.getLogger("amusic")

COMMANDS = ("tag", "easy", "encode", "process")

console = Console()


class ConfigurationError(Exception):
    """Raised for problems that should abort the run with a non-zero exit."""


# ---------------------------------------------------------------------------
# Logging and progress
# ---------------------------------------------------------------------------


def configure_logging(quiet: bool) -> None:
    logging.basicConfig(
        level=logging.WARNING if quiet else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _progress(quiet: bool) -> Progress:
    return Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        disable=quiet,
        transient=True,
    )


def _require_tools(*tools: str) -> None:
    for tool in tools:
        try:
            path = ensure_tool_exists(tool)
        except MissingToolError as exc:
            raise ConfigurationError(str(exc)) from exc
        logger.debug("Using %s at %s", tool, path)


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def print_processing_summary(summary: ProcessingSummary, title: str) -> None:
    console.print(f"\n--- {title} ---")
    console.print(f"Successfully processed: {summary.processed}")
    console.print(f"Skipped (already tagged/force not used): {summary.skipped}")
    console.print(f"No AcoustID results found: {summary.no_results}")
    console.print(f"AcoustID lookup failed (API/network issues): {summary.lookup_failed}")
    console.print(f"Other failures (e.g., file access, fpcalc): {summary.failed + summary.errors}")
    if summary.encode_failed:
        console.print(f"Encoding failures: {summary.encode_failed}")
    console.print("-" * 27)
    if summary.dry_run:
        console.print("\nNOTE: This was a dry run. No files were modified.")


def print_encoding_summary(stats: EncodingStats, dry_run: bool) -> None:
    console.print("\n--- Encoding Complete ---")
    console.print(f"Successfully encoded: {stats.processed}")
    console.print(f"Files skipped: {stats.total_skipped}")
    labels = {
        "already_m4a": "Already M4A format",
        "lossy_format": "Lossy format (use --force-lossy-transcodes)",
        "output_exists": "Output already exists",
    }
    for reason, count in stats.skip_reasons.items():
        if count:
            console.print(f"  {labels[reason.value]}: {count}")
    console.print(f"Failed: {stats.failed}")
    console.print("-" * 25)
    if dry_run:
        console.print("\nNOTE: This was a dry run. No files were modified.")


def _format_duration(seconds: float) -> str:
    minutes, rest = divmod(int(seconds), 60)
    return f"{minutes}:{rest:02d}"


def _format_channels(channels: int | None) -> str:
    if not channels:
        return "Unknown"
    return {1: "Mono", 2: "Stereo"}.get(channels, f"{channels} channels")


def _format_gain(gain: str | None, peak: str | None) -> str:
    if gain is None and peak is None:
        return "n/a"
    return f"Gain: {gain or 'n/a'} | Peak: {peak or 'n/a'}"


def show_tags(files: Sequence[Path], codec: TagCodec) -> None:
    """Print the tags, audio properties and loudness values of each file.

    Consecutive files from the same album share a heading. Unreadable files
    are logged and skipped.
    """
    last_album: str | None = None

    for path in files:
        try:
            tags = codec.read_tags(path)
            props = codec.audio_properties(path)
        except TagCodecError as exc:
            logger.error("Error reading %s: %s", path, exc)
            continue
        gain = codec.get_replaygain_tags(path) or ReplayGainTags()
        acoustid = codec.get_acoustid_tags(path) or AcoustIDTags()

        album = tags.album or "Unknown Album"
        if album != last_album:
            heading = f"{album} - {tags.artist or 'Unknown Artist'}"
            if tags.year:
                heading += f" ({tags.year})"
            console.rule(escape(heading), align="left")
            last_album = album

        table = Table(title=escape(tags.title or path.name), show_header=False, box=None)
        table.add_column(style="bold")
        table.add_column()
        table.add_row("File", escape(str(path)))
        table.add_row("Title", escape(tags.title or "Unknown Title"))
        table.add_row("Artist", escape(tags.artist or "Unknown Artist"))
        table.add_row(
            "Year/Track/Genre",
            escape(f"{tags.year or '?'} | {tags.track or '?'} | {tags.genre or 'Unknown'}"),
        )
        if tags.comment:
            table.add_row("Comment", escape(tags.comment))
        bitrate = f"{props.bitrate // 1000} kbps" if props.bitrate else "?"
        table.add_row(
            "Format/Codec/Bitrate",
            f"{path.suffix.lstrip('.').upper() or '?'} | {props.codec or '?'} | {bitrate}",
        )
        table.add_row(
            "Duration",
            _format_duration(props.duration_seconds) if props.duration_seconds else "Unknown",
        )
        table.add_row(
            "Sample Rate/Channels",
            f"{props.sample_rate or '?'} Hz | {_format_channels(props.channels)}",
        )
        table.add_row("Track Dynamics", _format_gain(gain.track_gain, gain.track_peak))
        table.add_row("Album Dynamics", _format_gain(gain.album_gain, gain.album_peak))
        table.add_row("ACOUSTID_ID", acoustid.acoustid_id or "-")
        table.add_row(
            "ACOUSTID_FINGERPRINT",
            f"{acoustid.fingerprint[:30]}..." if acoustid.fingerprint else "-",
        )
        console.print(table)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def run_tag(args: argparse.Namespace, codec: TagCodec) -> None:
    """Fingerprint files and write AcoustID tags."""
    if args.quiet:
        files = collect_audio_files(args.files)
    else:
        with console.status("Collecting audio files...") as status:
            files = collect_audio_files(
                args.files,
                on_progress=lambda n: status.update(f"Collecting audio files: {n} found"),
            )
    logger.info("Found %d audio file(s)", len(files))

    if args.show_tags:
        show_tags(files, codec)
        return

    if not files:
        logger.error("No valid audio files found to process.")
        return

    _require_tools("fpcalc")
    if not args.api_key:
        logger.warning("No AcoustID API key given; only fingerprints will be written")

    stats = ProcessingStats()
    semaphore = asyncio.Semaphore(settings.high_concurrency)

    async with AcoustIDClient() as client:
        with _progress(args.quiet) as progress:
            task = progress.add_task("Tagging", total=len(files))

            async def _tag(path: Path) -> None:
                async with semaphore:
                    try:
                        status = await process_acoustid_tagging(
                            path,
                            args.api_key,
                            force=args.force,
                            quiet=args.quiet,
                            dry_run=args.dry_run,
                            codec=codec,
                            client=client,
                        )
                    except Exception:
                        logger.exception("Unexpected error processing %s", path)
                        status = ProcessResultStatus.FAILED
                stats.increment(status)
                progress.advance(task)

            await asyncio.gather(*(_tag(path) for path in files))

    print_processing_summary(stats.summary(args.dry_run), "Processing Complete")


async def run_easy(args: argparse.Namespace, codec: TagCodec) -> None:
    """Album-wise ReplayGain and AcoustID over a library root."""
    if not args.api_key:
        raise ConfigurationError("--api-key is required for AcoustID lookups in easy mode.")
    library = Path(args.library)
    if not library.is_dir():
        raise ConfigurationError(f"Library directory does not exist: {library}")
    _require_tools("fpcalc", "rsgain")

    logger.info("Analyzing music library structure...")
    analysis = analyze_folder_structure([library], quiet=args.quiet)
    logger.info("Found %d albums to process", len(analysis.albums))
    if analysis.singles:
        logger.warning(
            "Found %d single files not in album folders. These will be skipped in easy mode.",
            len(analysis.singles),
        )

    options = TrackProcessingOptions(
        calculate_gain=True,
        process_acoustid=True,
        acoustid_api_key=args.api_key,
        force_acoustid=args.force,
        quiet=args.quiet,
        dry_run=args.dry_run,
    )
    stats = ProcessingStats()

    async with AcoustIDClient() as client:
        for album_dir, files in analysis.albums.items():
            results = await _run_album(album_dir, files, options, codec, client, args.quiet)
            for result in results:
                stats.record(result)

    print_processing_summary(stats.summary(args.dry_run), "Easy Mode Complete")
    if not args.quiet:
        console.print("\nLibrary Statistics:")
        console.print(f"  Total albums: {len(analysis.albums)}")
        console.print(f"  Total tracks: {analysis.total_tracks - len(analysis.singles)}")
        if analysis.singles:
            console.print(f"  Skipped singles: {len(analysis.singles)}")


async def run_encode(args: argparse.Namespace, codec: TagCodec) -> None:
    """Transcode audio files to M4A/AAC."""
    output_dir = Path(args.output_dir) if args.output_dir else None
    if not args.dry_run:
        _require_tools("ffmpeg")
        if output_dir is not None:
            try:
                output_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise ConfigurationError(f"Error creating output directory: {exc}") from exc

    # Structure is preserved relative to the argument each file came from
    groups = [(Path(arg), collect_audio_files([arg])) for arg in args.files]
    total = sum(len(files) for _, files in groups)
    if total == 0:
        raise ConfigurationError("No valid audio files found to encode.")

    stats = EncodingStats()
    with _progress(args.quiet) as progress:
        task = progress.add_task("Encoding", total=total)
        for base, files in groups:
            options = TrackProcessingOptions(
                encode=True,
                force_lossy_transcodes=args.force_lossy_transcodes,
                output_directory=output_dir,
                preserve_structure=not args.flatten_output,
                base_path=base,
                quiet=args.quiet,
                dry_run=args.dry_run,
            )
            results = await batch_process_tracks(
                files,
                options,
                codec=codec,
                on_progress=lambda *_: progress.advance(task),
            )
            for result in results:
                stats.record(result)

    print_encoding_summary(stats, args.dry_run)


async def run_process(args: argparse.Namespace, codec: TagCodec) -> None:
    """Unified encode / ReplayGain / AcoustID pass over albums and singles."""
    if not (args.encode or args.replay_gain or args.acoust_id):
        raise ConfigurationError(
            "No operations specified. Use --encode, --replay-gain, or --acoust-id"
        )

    tools = []
    if args.encode and not args.dry_run:
        tools.append("ffmpeg")
    if args.replay_gain:
        tools.append("rsgain")
    if args.acoust_id:
        tools.append("fpcalc")
        if not args.api_key:
            logger.warning("--acoust-id given without an API key; AcoustID will be skipped")
    _require_tools(*tools)

    logger.info("Analyzing folder structure...")
    analysis = analyze_folder_structure(args.paths, args.singles or (), quiet=args.quiet)
    logger.info("Found %d albums and %d singles", len(analysis.albums), len(analysis.singles))

    operations = [
        name
        for name, enabled in (
            ("encoding", args.encode),
            ("ReplayGain", args.replay_gain),
            ("AcoustID", args.acoust_id),
        )
        if enabled
    ]
    logger.info("Operations: %s", ", ".join(operations))

    options = TrackProcessingOptions(
        encode=args.encode,
        force_lossy_transcodes=args.force_lossy_transcodes,
        output_directory=Path(args.output_dir) if args.output_dir else None,
        preserve_structure=not args.flatten_output,
        base_path=Path(args.paths[0]),
        calculate_gain=args.replay_gain,
        process_acoustid=args.acoust_id,
        acoustid_api_key=args.api_key,
        force_acoustid=args.force,
        quiet=args.quiet,
        dry_run=args.dry_run,
    )
    stats = ProcessingStats()

    async with AcoustIDClient() as client:
        for album_dir, files in analysis.albums.items():
            for result in await _run_album(album_dir, files, options, codec, client, args.quiet):
                stats.record(result)

        if analysis.singles:
            logger.info("Processing singles...")
            # Singles have no album to compute gain against
            for result in await _run_singles(analysis.singles, options, codec, client, args.quiet):
                stats.record(result)

    print_processing_summary(stats.summary(args.dry_run), "Processing Complete")


async def _run_album(
    album_dir: Path,
    files: list[Path],
    options: TrackProcessingOptions,
    codec: TagCodec,
    client: AcoustIDClient,
    quiet: bool,
) -> list[TrackProcessingResult]:
    logger.info("Processing album: %s (%d tracks)", album_display_name(album_dir), len(files))
    with _progress(quiet) as progress:
        task = progress.add_task(album_display_name(album_dir), total=len(files))
        return await process_album(
            album_dir,
            files,
            options,
            codec=codec,
            client=client,
            on_progress=lambda *_: progress.advance(task),
        )


async def _run_singles(
    singles: list[Path],
    options: TrackProcessingOptions,
    codec: TagCodec,
    client: AcoustIDClient,
    quiet: bool,
) -> list[TrackProcessingResult]:
    pool = TrackProcessorPool(settings.default_concurrency, codec=codec, client=client)
    with _progress(quiet) as progress:
        task = progress.add_task("Singles", total=len(singles))
        futures = []
        for path in singles:
            future = pool.submit(path, options)
            future.add_done_callback(lambda _: progress.advance(task))
            futures.append(future)
        try:
            results = await asyncio.gather(*futures, return_exceptions=True)
        finally:
            await pool.shutdown()

    collected: list[TrackProcessingResult] = []
    for path, outcome in zip(singles, results, strict=True):
        if isinstance(outcome, BaseException):
            logger.error("Error processing %s: %s", path, outcome)
            collected.append(
                TrackProcessingResult(
                    input_path=path,
                    acoustid_status=ProcessResultStatus.FAILED,
                    acoustid_error=str(outcome),
                )
            )
        else:
            collected.append(outcome)
    return collected


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress informational output. Errors are still shown.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulate processing and API lookups but do not modify any files.",
    )


def _add_acoustid_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Force reprocessing even if AcoustID tags exist.",
    )
    parser.add_argument(
        "--api-key",
        default=settings.acoustid_api_key,
        help="AcoustID API key (default: $ACOUSTID_API_KEY).",
    )


def _add_encode_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--force-lossy-transcodes",
        action="store_true",
        help="Allow transcoding from lossy formats (MP3, OGG). Not recommended.",
    )
    parser.add_argument(
        "-o",
        "--output-dir",
        help="Output directory for encoded files (default: next to the source).",
    )
    parser.add_argument(
        "--flatten-output",
        action="store_true",
        help="Put all output files directly in --output-dir instead of mirroring folders.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="amusic",
        description="Calculate ReplayGain and embed AcoustID fingerprints and IDs.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    tag = subparsers.add_parser(
        "tag", help="Fingerprint files and write AcoustID tags (default command)."
    )
    _add_common_options(tag)
    _add_acoustid_options(tag)
    tag.add_argument(
        "--show-tags",
        action="store_true",
        help="Display existing tags, audio properties and ReplayGain values and exit.",
    )
    tag.add_argument("files", nargs="+", help="Audio files or directories.")

    easy = subparsers.add_parser(
        "easy",
        help="ReplayGain and AcoustID for each album under a library root.",
    )
    _add_common_options(easy)
    _add_acoustid_options(easy)
    easy.add_argument("library", help="Library root; each album in its own folder.")

    encode = subparsers.add_parser(
        "encode",
        help="Encode audio files to M4A/AAC (lossless sources only by default).",
    )
    _add_common_options(encode)
    _add_encode_options(encode)
    encode.add_argument("files", nargs="+", help="Audio files or directories.")

    process = subparsers.add_parser(
        "process",
        help="Encode, calculate ReplayGain and tag AcoustID in a single pass per track.",
    )
    _add_common_options(process)
    _add_acoustid_options(process)
    _add_encode_options(process)
    process.add_argument("--encode", action="store_true", help="Encode to M4A/AAC.")
    process.add_argument(
        "--replay-gain", action="store_true", help="Calculate album ReplayGain."
    )
    process.add_argument(
        "--acoust-id", action="store_true", help="Fingerprint and tag AcoustID."
    )
    process.add_argument(
        "--singles",
        action="append",
        metavar="PATTERN",
        help="Folder pattern whose files are processed as singles (repeatable).",
    )
    process.add_argument("paths", nargs="+", help="Audio files or directories.")

    return parser


_RUNNERS = {
    "tag": run_tag,
    "easy": run_easy,
    "encode": run_encode,
    "process": run_process,
}


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse arguments; anything that is not a command runs the tag command."""
    argv = list(sys.argv[1:] if argv is None else argv)
    if argv and argv[0] not in COMMANDS and argv[0] not in ("-h", "--help", "--version"):
        argv.insert(0, "tag")
    return build_parser().parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point."""
    args = parse_args(argv)
    configure_logging(args.quiet)

    codec = TagCodec()
    try:
        asyncio.run(_RUNNERS[args.command](args, codec))
    except ConfigurationError as exc:
        logger.error("Error: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
