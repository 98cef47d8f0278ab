"""Audio file discovery and album/singles folder analysis.

A leaf directory (no subdirectories) holding audio files is an album.
Directories with subdirectories are containers: each subdirectory is
analyzed in turn, and audio files sitting next to those subdirectories are
reported and left out, since it is unclear which album they belong to.
Files passed directly, and directories matching a singles pattern, are
processed as singles. Symlinked directories are never descended into, so
every file is reported at most once.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from amusic.audio.formats import is_audio_file

logger = logging.getLogger(__name__)


@dataclass
class FolderAnalysis:
    """Albums (directory -> member files) and standalone singles."""

    albums: dict[Path, list[Path]] = field(default_factory=dict)
    singles: list[Path] = field(default_factory=list)

    @property
    def total_tracks(self) -> int:
        return sum(len(files) for files in self.albums.values()) + len(self.singles)


def _normalize(path: Path | str) -> str:
    return str(path).replace("\\", "/")


def matches_singles_pattern(folder_path: Path | str, singles_patterns: Iterable[str]) -> bool:
    """Check a folder against the singles patterns.

    A pattern matches on exact path equality, as a path suffix, or as a
    substring anywhere in the path. Any match wins, so a short pattern can
    also match unrelated folders whose path happens to contain it.
    """
    normalized_path = _normalize(folder_path)
    for pattern in singles_patterns:
        normalized_pattern = _normalize(pattern)
        if not normalized_pattern:
            continue
        if normalized_path == normalized_pattern:
            return True
        if normalized_path.endswith("/" + normalized_pattern):
            return True
        if normalized_pattern in normalized_path:
            return True
    return False


def _is_linked_dir(entry: Path) -> bool:
    if entry.is_symlink() and entry.is_dir():
        logger.debug("Skipping symlinked directory %s", entry)
        return True
    return False


def _scan_directory(directory: Path) -> list[Path]:
    files: list[Path] = []
    for entry in sorted(directory.iterdir()):
        if _is_linked_dir(entry):
            continue
        if entry.is_dir():
            files.extend(_scan_directory(entry))
        elif entry.is_file() and is_audio_file(entry):
            files.append(entry)
    return files


def collect_audio_files(
    paths: Iterable[Path | str],
    on_progress: Callable[[int], None] | None = None,
) -> list[Path]:
    """Collect supported audio files from files and (recursively) directories.

    Unsupported files and missing paths are logged and skipped.

    Args:
        paths: Files and/or directories.
        on_progress: Called with the running file count.

    Returns:
        Sorted list of audio file paths.
    """
    found: list[Path] = []

    for raw in paths:
        path = Path(raw)
        try:
            if path.is_dir():
                found.extend(_scan_directory(path))
            elif path.is_file():
                if is_audio_file(path):
                    found.append(path)
                else:
                    logger.warning("File %s has unsupported extension; skipping", path)
            else:
                logger.error("Path %s not found; skipping", path)
        except OSError as exc:
            logger.warning("Path %s is inaccessible (%s); skipping", path, exc)
            continue

        if on_progress is not None:
            on_progress(len(found))

    return sorted(found)


def _add_singles_folder(folder: Path, result: FolderAnalysis, quiet: bool) -> None:
    audio_files = collect_audio_files([folder])
    result.singles.extend(audio_files)
    if not quiet:
        logger.info("Processing %s as singles (%d files)", folder, len(audio_files))


def _process_folder_as_albums(
    folder: Path,
    result: FolderAnalysis,
    singles_patterns: list[str],
    quiet: bool,
) -> None:
    subfolders: list[Path] = []
    audio_files: list[Path] = []

    for entry in sorted(folder.iterdir()):
        if _is_linked_dir(entry):
            continue
        if entry.is_dir():
            subfolders.append(entry)
        elif entry.is_file() and is_audio_file(entry):
            audio_files.append(entry)

    if subfolders:
        for subfolder in subfolders:
            if matches_singles_pattern(subfolder, singles_patterns):
                _add_singles_folder(subfolder, result, quiet)
            else:
                _process_folder_as_albums(subfolder, result, singles_patterns, quiet)

        if audio_files:
            logger.warning(
                "Found %d audio files in %s which also contains subfolders. "
                "These files will be ignored. Move them to a subfolder or use "
                "--singles to process them.",
                len(audio_files),
                folder,
            )
    elif audio_files:
        result.albums[folder] = audio_files
        if not quiet:
            logger.info("Found album: %s (%d tracks)", folder, len(audio_files))


def analyze_folder_structure(
    paths: Iterable[Path | str],
    singles_patterns: Iterable[str] = (),
    quiet: bool = False,
) -> FolderAnalysis:
    """Partition input paths into albums and singles.

    Args:
        paths: Files and directories to analyze.
        singles_patterns: Folder patterns whose contents are processed as singles.
        quiet: Suppress informational logging (warnings are still emitted).

    Returns:
        FolderAnalysis with albums keyed by directory and the singles list.
    """
    patterns = list(singles_patterns)
    result = FolderAnalysis()

    for raw in paths:
        path = Path(raw)
        try:
            if path.is_file():
                if is_audio_file(path):
                    result.singles.append(path)
                else:
                    logger.warning("File %s has unsupported extension; skipping", path)
            elif path.is_dir():
                if matches_singles_pattern(path, patterns):
                    _add_singles_folder(path, result, quiet)
                else:
                    _process_folder_as_albums(path, result, patterns, quiet)
            else:
                logger.error("Path %s not found; skipping", path)
        except OSError as exc:
            logger.error("Error processing path %s: %s", path, exc)

    return result


def album_display_name(album_path: Path | str) -> str:
    """Short ``Artist/Album`` style name for an album directory."""
    parts = Path(album_path).parts
    if len(parts) >= 2:
        return "/".join(parts[-2:])
    return parts[-1] if parts else str(album_path)
