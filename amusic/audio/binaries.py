"""Resolution of the external command-line tools used by the pipeline.

fpcalc (Chromaprint), rsgain, and ffmpeg are configured through settings.
A configured absolute path that does not exist falls back to the bare tool
name so the binary can still be found on PATH.
"""

import logging
import shutil
from pathlib import Path

from amusic.settings import settings

logger = logging.getLogger(__name__)

_TOOL_SETTINGS: dict[str, str] = {
    "fpcalc": "fpcalc_bin_path",
    "rsgain": "rsgain_bin_path",
    "ffmpeg": "ffmpeg_bin_path",
}


class MissingToolError(Exception):
    """Raised when a required external tool cannot be found."""


def get_tool_path(tool: str) -> str:
    """Get the path or command name for an external tool.

    Args:
        tool: One of ``"fpcalc"``, ``"rsgain"`` or ``"ffmpeg"``.

    Returns:
        Path string for the binary, or the bare tool name for PATH lookup.

    Raises:
        ValueError: If the tool is not known.
    """
    try:
        attr = _TOOL_SETTINGS[tool]
    except KeyError:
        raise ValueError(f"Unknown tool: {tool}") from None

    configured = getattr(settings, attr) or tool
    if Path(configured).is_absolute() and not Path(configured).exists():
        logger.warning(
            "Configured %s %s does not exist, falling back to '%s' from PATH",
            attr,
            configured,
            tool,
        )
        return tool
    return configured


def ensure_tool_exists(tool: str) -> str:
    """Resolve a tool and verify it can be executed.

    Returns:
        The resolved executable path.

    Raises:
        MissingToolError: If the binary is not on PATH or at the configured path.
    """
    configured = get_tool_path(tool)
    resolved = shutil.which(configured)
    if resolved is None:
        raise MissingToolError(
            f"{tool} not found at '{configured}'. "
            f"Install it or set {_TOOL_SETTINGS[tool].upper()} in the environment."
        )
    return resolved
