"""AcoustID tagging of a single file.

Runs the stages in order and stops at the first terminal outcome:

1. The path must be an existing regular file.
2. Existing AcoustID tags skip the file unless ``force`` is set.
3. fpcalc generates the fingerprint.
4. The duration is read from the file (``0`` when unknown).
5. With an API key, the fingerprint is looked up; the first (best ranked)
   candidate's AcoustID is used.
6. Dry runs stop here and report what would have been written.
7. The fingerprint (and AcoustID, if found) is written atomically.
"""

from __future__ import annotations

import logging
import stat
from enum import StrEnum
from pathlib import Path
from typing import Protocol

from amusic.audio.fingerprint import generate_fingerprint
from amusic.audio.tags import TagCodecError
from amusic.identify.acoustid import AcoustIDClient, AcoustIDLookupError, LookupResult

logger = logging.getLogger(__name__)


class ProcessResultStatus(StrEnum):
    """Outcome of AcoustID tagging for one file."""

    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"
    LOOKUP_FAILED = "lookup_failed"
    NO_RESULTS = "no_results"


class AcoustIDTagCodec(Protocol):
    def has_acoustid_tags(self, path: Path | str) -> bool: ...

    def get_audio_duration(self, path: Path | str) -> float: ...

    def write_acoustid_tags(
        self, path: Path | str, fingerprint: str, acoustid_id: str | None = None
    ) -> None: ...


class FingerprintLookup(Protocol):
    async def lookup(self, fingerprint: str, duration: float, api_key: str) -> LookupResult: ...


def _say(quiet: bool, msg: str, *args: object) -> None:
    if not quiet:
        logger.info(msg, *args)


def _check_regular_file(file_path: Path) -> bool:
    try:
        mode = file_path.stat().st_mode
    except FileNotFoundError:
        logger.error("File not found: %s", file_path)
        return False
    except OSError as exc:
        logger.error("Error accessing file %s: %s", file_path, exc)
        return False

    if not stat.S_ISREG(mode):
        logger.error("Path is not a file: %s", file_path)
        return False
    return True


async def _lookup_acoustid(
    client: FingerprintLookup,
    fingerprint: str,
    duration: float,
    api_key: str,
    quiet: bool,
) -> tuple[ProcessResultStatus, str | None]:
    """Return ``(status so far, AcoustID to write)``."""
    _say(quiet, "  Looking up fingerprint with AcoustID API...")
    try:
        lookup = await client.lookup(fingerprint, duration, api_key)
    except AcoustIDLookupError as exc:
        logger.warning("AcoustID lookup failed: %s", exc)
        return ProcessResultStatus.LOOKUP_FAILED, None

    if not lookup.results:
        _say(quiet, "  No results found from AcoustID API for this fingerprint")
        return ProcessResultStatus.NO_RESULTS, None

    # Candidates are ranked best first
    acoustid_id = lookup.results[0].id
    _say(quiet, "  Found AcoustID: %s", acoustid_id)
    return ProcessResultStatus.PROCESSED, acoustid_id


async def process_acoustid_tagging(
    file_path: Path | str,
    api_key: str | None,
    *,
    force: bool = False,
    quiet: bool = False,
    dry_run: bool = False,
    codec: AcoustIDTagCodec,
    client: FingerprintLookup | None = None,
) -> ProcessResultStatus:
    """Fingerprint a file, identify it, and write the AcoustID tags.

    Args:
        file_path: Audio file to tag.
        api_key: AcoustID API key. Without one only the fingerprint is written.
        force: Overwrite existing AcoustID tags.
        quiet: Suppress per-stage informational logging.
        dry_run: Run every read and lookup stage but write nothing.
        codec: Tag codec used for reading and writing.
        client: AcoustID client; one is created for the call when omitted.

    Returns:
        The terminal ProcessResultStatus. A lookup failure or empty lookup is
        reported even though the fingerprint itself is still written; a
        failed write always yields ``FAILED``.
    """
    file_path = Path(file_path)
    _say(quiet, "-> Processing file: %s", file_path)

    if not _check_regular_file(file_path):
        return ProcessResultStatus.FAILED

    _say(quiet, "  Checking for existing AcoustID tags...")
    if codec.has_acoustid_tags(file_path):
        if not force:
            _say(quiet, "  File already has AcoustID tags, skipping (use --force to overwrite)")
            return ProcessResultStatus.SKIPPED
        _say(quiet, "  File already has AcoustID tags, --force given, overwriting")

    _say(quiet, "  Generating AcoustID fingerprint...")
    fpcalc_result = await generate_fingerprint(file_path)
    if fpcalc_result is None:
        logger.warning("Could not generate fingerprint for %s", file_path)
        return ProcessResultStatus.FAILED
    fingerprint = fpcalc_result.fingerprint
    _say(quiet, "  Generated fingerprint: %s...", fingerprint[:30])

    duration = codec.get_audio_duration(file_path)
    if not duration:
        duration = 0.0
        _say(quiet, "  Could not determine audio duration, lookup may be less accurate")

    status = ProcessResultStatus.PROCESSED
    acoustid_id: str | None = None
    if api_key:
        if client is None:
            async with AcoustIDClient() as owned_client:
                status, acoustid_id = await _lookup_acoustid(
                    owned_client, fingerprint, duration, api_key, quiet
                )
        else:
            status, acoustid_id = await _lookup_acoustid(
                client, fingerprint, duration, api_key, quiet
            )
    else:
        _say(quiet, "  No AcoustID API key provided, writing fingerprint only")

    if dry_run:
        _say(
            quiet,
            "  DRY RUN: would write ACOUSTID_FINGERPRINT=%s... and ACOUSTID_ID=%s to %s",
            fingerprint[:30],
            acoustid_id or "",
            file_path,
        )
        return status

    _say(quiet, "  Writing ACOUSTID_FINGERPRINT and ACOUSTID_ID tags...")
    try:
        codec.write_acoustid_tags(file_path, fingerprint, acoustid_id)
    except TagCodecError as exc:
        logger.error("Failed to write AcoustID tags to %s: %s", file_path, exc)
        return ProcessResultStatus.FAILED

    _say(quiet, "  AcoustID tags written to %s", file_path)
    return status
