"""Chromaprint fingerprint generation via the fpcalc CLI.

Runs ``fpcalc -json <file>`` with ``asyncio.create_subprocess_exec`` so the
event loop stays free while the audio is decoded.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path

from amusic.audio.binaries import get_tool_path
from amusic.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class FpcalcResult:
    """Fingerprint and duration reported by fpcalc."""

    fingerprint: str
    duration: float


def parse_fpcalc_output(stdout: str) -> FpcalcResult | None:
    """Parse the JSON document printed by ``fpcalc -json``.

    Returns:
        FpcalcResult, or ``None`` if the output is malformed or has no
        fingerprint.
    """
    try:
        data = json.loads(stdout.strip())
    except json.JSONDecodeError as exc:
        logger.error("Could not parse fpcalc JSON output: %s", exc)
        return None

    if not isinstance(data, dict):
        logger.error("Unexpected fpcalc output: %r", data)
        return None

    fingerprint = data.get("fingerprint")
    if not fingerprint:
        logger.error("No fingerprint found in fpcalc JSON output")
        return None

    try:
        duration = float(data.get("duration") or 0.0)
    except (TypeError, ValueError):
        duration = 0.0

    return FpcalcResult(fingerprint=str(fingerprint), duration=duration)


async def generate_fingerprint(file_path: Path | str) -> FpcalcResult | None:
    """Generate the Chromaprint fingerprint of an audio file.

    Args:
        file_path: Path to the audio file.

    Returns:
        FpcalcResult, or ``None`` if fingerprinting fails for any reason
        (missing binary, non-zero exit, timeout, unparseable output).
    """
    fpcalc = get_tool_path("fpcalc")
    timeout = settings.command_timeout_seconds

    try:
        proc = await asyncio.create_subprocess_exec(
            fpcalc,
            "-json",
            str(file_path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(),
                timeout=timeout,
            )
        except TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning("fpcalc timed out after %.0f seconds for %s", timeout, file_path)
            return None

        if proc.returncode != 0:
            logger.error(
                "fpcalc exited with code %d for %s: %s",
                proc.returncode,
                file_path,
                stderr_bytes.decode(errors="replace").strip(),
            )
            return None

        return parse_fpcalc_output(stdout_bytes.decode(errors="replace"))

    except FileNotFoundError:
        logger.error("fpcalc binary not found at '%s'; fingerprinting unavailable", fpcalc)
        return None
    except OSError as exc:
        logger.error("Failed to run fpcalc for %s: %s", file_path, exc)
        return None
