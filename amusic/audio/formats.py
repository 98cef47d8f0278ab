"""Audio file extension sets and lossless/lossy classification."""

import logging
from pathlib import Path
from typing import Protocol

from amusic.audio.tags import TagCodecError

logger = logging.getLogger(__name__)

# Extensions picked up by discovery and the folder analyzer
AUDIO_EXTENSIONS: set[str] = {".mp3", ".flac", ".ogg", ".m4a", ".wav"}

LOSSLESS_EXTENSIONS: set[str] = {".wav", ".flac"}
LOSSY_EXTENSIONS: set[str] = {".mp3", ".ogg", ".opus", ".aac", ".wma"}
# Containers that may hold either ALAC or AAC
AMBIGUOUS_EXTENSIONS: set[str] = {".m4a", ".mp4"}


class LosslessProbe(Protocol):
    def is_lossless(self, path: Path | str) -> bool: ...


def is_audio_file(path: Path | str) -> bool:
    """Check whether a path has a supported audio extension."""
    return Path(path).suffix.lower() in AUDIO_EXTENSIONS


def is_lossless_format(file_path: Path | str, codec: LosslessProbe) -> bool:
    """Decide whether a file holds losslessly encoded audio.

    Known extensions are classified without opening the file. For M4A/MP4
    the codec is asked; anything it cannot read is treated as lossy so that
    a lossy source is never transcoded by accident.

    Args:
        file_path: Path to the audio file.
        codec: Tag codec used only for ambiguous containers.

    Returns:
        True for lossless audio, False otherwise.
    """
    ext = Path(file_path).suffix.lower()

    if ext in LOSSLESS_EXTENSIONS:
        return True
    if ext in LOSSY_EXTENSIONS:
        return False

    if ext in AMBIGUOUS_EXTENSIONS:
        try:
            return codec.is_lossless(file_path)
        except TagCodecError:
            # Missing files land here as well
            logger.debug("Could not inspect %s, assuming lossy", file_path)
            return False

    return False
