"""Tag codec built on mutagen.

Reads basic tags, AcoustID fields, and ReplayGain fields for the three tag
families mutagen exposes, and writes the AcoustID fields (rsgain writes the
loudness tags itself):

- ID3 (MP3, WAV, AIFF): text frames plus ``TXXX`` user frames
- Vorbis comments (FLAC, OGG Vorbis, Opus)
- MP4 atoms (M4A/ALAC/AAC): text atoms plus ``----:com.apple.iTunes`` freeform atoms

AcoustID field names follow the MusicBrainz Picard conventions so files
tagged here are recognized by other tools.

The codec never keeps a file open between operations. Writes go through a
temporary copy in the file's own directory that atomically replaces the
original once mutagen has saved it.
"""

import contextlib
import logging
import os
import shutil
import tempfile
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

import mutagen
from mutagen import MutagenError
from mutagen.aiff import AIFF
from mutagen.flac import FLAC
from mutagen.id3 import ID3, TXXX
from mutagen.mp4 import MP4, MP4FreeForm
from mutagen.wave import WAVE

logger = logging.getLogger(__name__)

_FREEFORM_PREFIX = "----:com.apple.iTunes:"

# Extended field -> (ID3 TXXX descriptions, Vorbis keys, MP4 freeform names).
# The first name in each tuple is the one written; the rest are read aliases.
_EXTENDED_FIELDS: dict[str, tuple[tuple[str, ...], tuple[str, ...], tuple[str, ...]]] = {
    "acoustid_fingerprint": (
        ("Acoustid Fingerprint", "ACOUSTID_FINGERPRINT"),
        ("ACOUSTID_FINGERPRINT",),
        ("Acoustid Fingerprint", "ACOUSTID_FINGERPRINT"),
    ),
    "acoustid_id": (
        ("Acoustid Id", "ACOUSTID_ID"),
        ("ACOUSTID_ID",),
        ("Acoustid Id", "ACOUSTID_ID"),
    ),
    "replaygain_track_gain": (
        ("REPLAYGAIN_TRACK_GAIN", "replaygain_track_gain"),
        ("REPLAYGAIN_TRACK_GAIN",),
        ("replaygain_track_gain", "REPLAYGAIN_TRACK_GAIN"),
    ),
    "replaygain_track_peak": (
        ("REPLAYGAIN_TRACK_PEAK", "replaygain_track_peak"),
        ("REPLAYGAIN_TRACK_PEAK",),
        ("replaygain_track_peak", "REPLAYGAIN_TRACK_PEAK"),
    ),
    "replaygain_album_gain": (
        ("REPLAYGAIN_ALBUM_GAIN", "replaygain_album_gain"),
        ("REPLAYGAIN_ALBUM_GAIN",),
        ("replaygain_album_gain", "REPLAYGAIN_ALBUM_GAIN"),
    ),
    "replaygain_album_peak": (
        ("REPLAYGAIN_ALBUM_PEAK", "replaygain_album_peak"),
        ("REPLAYGAIN_ALBUM_PEAK",),
        ("replaygain_album_peak", "REPLAYGAIN_ALBUM_PEAK"),
    ),
}

# Basic field -> (ID3 frame, Vorbis key, MP4 atom)
_BASIC_FIELDS: dict[str, tuple[str, str, str]] = {
    "title": ("TIT2", "title", "\xa9nam"),
    "artist": ("TPE1", "artist", "\xa9ART"),
    "album": ("TALB", "album", "\xa9alb"),
    "year": ("TDRC", "date", "\xa9day"),
    "track": ("TRCK", "tracknumber", "trkn"),
    "genre": ("TCON", "genre", "\xa9gen"),
    "comment": ("COMM", "comment", "\xa9cmt"),
}

_LOSSLESS_TYPES: tuple[type, ...] = (FLAC, WAVE, AIFF)


class TagCodecError(Exception):
    """Raised when a file cannot be opened, read, or written."""


@dataclass
class TrackTags:
    """Basic descriptive tags of a track."""

    title: str | None = None
    artist: str | None = None
    album: str | None = None
    year: str | None = None
    track: str | None = None
    genre: str | None = None
    comment: str | None = None


@dataclass
class AudioProperties:
    """Technical properties reported by the codec."""

    duration_seconds: float = 0.0
    bitrate: int | None = None
    sample_rate: int | None = None
    channels: int | None = None
    codec: str | None = None
    lossless: bool = False


@dataclass
class AcoustIDTags:
    fingerprint: str | None = None
    acoustid_id: str | None = None

    @property
    def present(self) -> bool:
        return bool(self.fingerprint or self.acoustid_id)


@dataclass
class ReplayGainTags:
    track_gain: str | None = None
    track_peak: str | None = None
    album_gain: str | None = None
    album_peak: str | None = None

    @property
    def present(self) -> bool:
        return any(
            v is not None
            for v in (self.track_gain, self.track_peak, self.album_gain, self.album_peak)
        )


class TagHandle:
    """An opened audio file. Changes are kept in memory until :meth:`save`."""

    def __init__(self, path: Path, audio: mutagen.FileType) -> None:
        self.path = path
        self._audio = audio

    # -- family dispatch -----------------------------------------------------

    def _family(self) -> str | None:
        tags = self._audio.tags
        if tags is None:
            return None
        if isinstance(self._audio, MP4):
            return "mp4"
        if isinstance(tags, ID3):
            return "id3"
        return "vorbis"

    def _ensure_tags(self) -> None:
        if self._audio.tags is None:
            self._audio.add_tags()

    def _get_extended(self, name: str) -> str | None:
        id3_names, vorbis_names, mp4_names = _EXTENDED_FIELDS[name]
        tags = self._audio.tags
        family = self._family()

        if family == "id3":
            for desc in id3_names:
                frame = tags.get(f"TXXX:{desc}")
                if frame is not None and frame.text:
                    return str(frame.text[0])
        elif family == "vorbis":
            for key in vorbis_names:
                values = tags.get(key)
                if values:
                    return str(values[0])
        elif family == "mp4":
            for key in mp4_names:
                values = tags.get(_FREEFORM_PREFIX + key)
                if values:
                    return bytes(values[0]).decode("utf-8", errors="replace")
        return None

    def _set_extended(self, name: str, value: str) -> None:
        id3_names, vorbis_names, mp4_names = _EXTENDED_FIELDS[name]
        self._ensure_tags()
        tags = self._audio.tags
        family = self._family()

        if family == "id3":
            tags.add(TXXX(encoding=3, desc=id3_names[0], text=[value]))
        elif family == "vorbis":
            tags[vorbis_names[0]] = [value]
        elif family == "mp4":
            tags[_FREEFORM_PREFIX + mp4_names[0]] = [MP4FreeForm(value.encode("utf-8"))]
        else:
            raise TagCodecError(f"Unsupported tag format in {self.path}")

    def _delete_extended(self, name: str) -> None:
        id3_names, vorbis_names, mp4_names = _EXTENDED_FIELDS[name]
        tags = self._audio.tags
        family = self._family()

        if family == "id3":
            for desc in id3_names:
                tags.delall(f"TXXX:{desc}")
        elif family == "vorbis":
            for key in vorbis_names:
                if key in tags:
                    del tags[key]
        elif family == "mp4":
            for key in mp4_names:
                tags.pop(_FREEFORM_PREFIX + key, None)

    # -- reads -----------------------------------------------------------------

    def tags(self) -> TrackTags:
        result = TrackTags()
        tags = self._audio.tags
        family = self._family()
        if family is None:
            return result

        for field_name, (id3_key, vorbis_key, mp4_key) in _BASIC_FIELDS.items():
            value: str | None = None
            if family == "id3":
                frames = tags.getall(id3_key)
                if frames and getattr(frames[0], "text", None):
                    value = str(frames[0].text[0])
            elif family == "vorbis":
                values = tags.get(vorbis_key)
                value = str(values[0]) if values else None
            else:
                values = tags.get(mp4_key)
                if values:
                    first = values[0]
                    # trkn is stored as (track, total)
                    value = str(first[0]) if isinstance(first, tuple) else str(first)
            setattr(result, field_name, value)
        return result

    def audio_properties(self) -> AudioProperties:
        info = self._audio.info
        props = AudioProperties()
        if info is None:
            return props

        props.duration_seconds = float(getattr(info, "length", 0.0) or 0.0)
        props.sample_rate = getattr(info, "sample_rate", None)
        props.channels = getattr(info, "channels", None)
        bitrate = getattr(info, "bitrate", None)
        if bitrate is not None:
            props.bitrate = int(bitrate)
        props.codec = getattr(info, "codec", None)

        if isinstance(self._audio, _LOSSLESS_TYPES):
            props.lossless = True
        elif isinstance(self._audio, MP4):
            props.lossless = (props.codec or "").lower().startswith("alac")
        return props

    def get_fingerprint(self) -> str | None:
        return self._get_extended("acoustid_fingerprint")

    def get_identity_id(self) -> str | None:
        return self._get_extended("acoustid_id")

    def get_replaygain(self) -> ReplayGainTags:
        return ReplayGainTags(
            track_gain=self._get_extended("replaygain_track_gain"),
            track_peak=self._get_extended("replaygain_track_peak"),
            album_gain=self._get_extended("replaygain_album_gain"),
            album_peak=self._get_extended("replaygain_album_peak"),
        )

    # -- writes ----------------------------------------------------------------

    def set_fingerprint(self, fingerprint: str) -> None:
        self._set_extended("acoustid_fingerprint", fingerprint)

    def set_identity_id(self, acoustid_id: str) -> None:
        self._set_extended("acoustid_id", acoustid_id)

    def clear_identity_id(self) -> None:
        self._delete_extended("acoustid_id")

    def save(self) -> None:
        try:
            self._audio.save()
        except (MutagenError, OSError) as exc:
            raise TagCodecError(f"Failed to save tags to {self.path}: {exc}") from exc


@contextlib.contextmanager
def scoped_temp_dir(parent: Path) -> Iterator[Path]:
    """Create a temporary directory that is removed on every exit path.

    Removal failures are logged and never raised.
    """
    tmp_dir = Path(tempfile.mkdtemp(prefix=".amusic-", dir=parent))
    try:
        yield tmp_dir
    finally:
        try:
            shutil.rmtree(tmp_dir)
        except OSError as exc:
            logger.warning("Failed to clean up temp directory %s: %s", tmp_dir, exc)


class TagCodec:
    """Tag reading and writing service.

    Construct one instance per run and pass it to the components that need
    it. Tests substitute a fake with the same methods.
    """

    def open(self, path: Path | str) -> TagHandle:
        """Open an audio file.

        Raises:
            TagCodecError: If the file is missing, unreadable, or not audio.
        """
        path = Path(path)
        try:
            audio = mutagen.File(str(path))
        except (MutagenError, OSError) as exc:
            raise TagCodecError(f"Could not open {path}: {exc}") from exc
        if audio is None:
            raise TagCodecError(f"Unrecognized audio format: {path}")
        return TagHandle(path, audio)

    def audio_properties(self, path: Path | str) -> AudioProperties:
        return self.open(path).audio_properties()

    def read_tags(self, path: Path | str) -> TrackTags:
        return self.open(path).tags()

    def is_lossless(self, path: Path | str) -> bool:
        """Return the codec-reported lossless flag.

        Raises:
            TagCodecError: If the file cannot be read.
        """
        return self.audio_properties(path).lossless

    def get_audio_duration(self, path: Path | str) -> float:
        """Duration in seconds, or ``0.0`` if it cannot be determined."""
        try:
            return self.audio_properties(path).duration_seconds
        except TagCodecError as exc:
            logger.error("Error getting audio duration from %s: %s", path, exc)
            return 0.0

    def get_acoustid_tags(self, path: Path | str) -> AcoustIDTags | None:
        """Read the AcoustID fields. ``None`` if none are set or on read errors."""
        try:
            handle = self.open(path)
            tags = AcoustIDTags(
                fingerprint=handle.get_fingerprint(),
                acoustid_id=handle.get_identity_id(),
            )
        except TagCodecError as exc:
            logger.error("Error reading tags from %s: %s", path, exc)
            return None
        return tags if tags.present else None

    def has_acoustid_tags(self, path: Path | str) -> bool:
        return self.get_acoustid_tags(path) is not None

    def get_replaygain_tags(self, path: Path | str) -> ReplayGainTags | None:
        try:
            tags = self.open(path).get_replaygain()
        except TagCodecError as exc:
            logger.error("Error reading ReplayGain tags from %s: %s", path, exc)
            return None
        return tags if tags.present else None

    def write_acoustid_tags(
        self, path: Path | str, fingerprint: str, acoustid_id: str | None = None
    ) -> None:
        """Persist the fingerprint and, when given, the AcoustID.

        Without an AcoustID any previously stored one is removed, so the id on
        file always belongs to the fingerprint next to it.

        Raises:
            TagCodecError: If the file cannot be updated. The original file is
                left untouched in that case.
        """

        def _apply(handle: TagHandle) -> None:
            handle.set_fingerprint(fingerprint)
            if acoustid_id:
                handle.set_identity_id(acoustid_id)
            else:
                handle.clear_identity_id()

        self._atomic_update(Path(path), _apply)

    def _atomic_update(self, path: Path, mutate: Callable[[TagHandle], None]) -> None:
        """Apply ``mutate`` to a temp copy of ``path`` and swap it into place."""
        if not path.is_file():
            raise TagCodecError(f"Not a file: {path}")

        try:
            with scoped_temp_dir(path.parent) as tmp_dir:
                tmp_file = tmp_dir / path.name
                shutil.copy2(path, tmp_file)
                handle = self.open(tmp_file)
                mutate(handle)
                handle.save()
                os.replace(tmp_file, path)
        except OSError as exc:
            raise TagCodecError(f"Failed to update {path}: {exc}") from exc
