"""Tests for amusic.audio.tags against real WAV files."""

import array
import math
import wave
from pathlib import Path
from unittest.mock import patch

import pytest
from mutagen.id3 import TIT2, TPE1, TXXX
from mutagen.wave import WAVE

from amusic.audio.tags import TagCodec, TagCodecError, scoped_temp_dir

SAMPLE_RATE = 22050


def _write_tone(path: Path, seconds: float = 0.5, channels: int = 1) -> Path:
    """Write a 16-bit 440 Hz tone, the same signal on every channel."""
    samples = array.array("h")
    for i in range(int(SAMPLE_RATE * seconds)):
        value = int(12000 * math.sin(2 * math.pi * 440 * i / SAMPLE_RATE))
        samples.extend([value] * channels)

    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(SAMPLE_RATE)
        wf.writeframes(samples.tobytes())
    return path


def _add_id3_frames(path: Path, *frames) -> None:
    audio = WAVE(str(path))
    if audio.tags is None:
        audio.add_tags()
    for frame in frames:
        audio.tags.add(frame)
    audio.save()


@pytest.fixture
def wav_file(tmp_path: Path) -> Path:
    return _write_tone(tmp_path / "track.wav")


@pytest.fixture
def codec() -> TagCodec:
    return TagCodec()


class TestReadProperties:
    @pytest.mark.parametrize("channels", [1, 2])
    def test_wav_properties(self, codec: TagCodec, tmp_path: Path, channels: int) -> None:
        path = _write_tone(tmp_path / f"{channels}ch.wav", channels=channels)

        props = codec.audio_properties(path)
        assert props.duration_seconds == pytest.approx(0.5, abs=0.05)
        assert props.sample_rate == SAMPLE_RATE
        assert props.channels == channels
        assert props.lossless is True

    def test_duration(self, codec: TagCodec, wav_file: Path) -> None:
        assert codec.get_audio_duration(wav_file) == pytest.approx(0.5, abs=0.05)

    def test_duration_of_missing_file_is_zero(self, codec: TagCodec, tmp_path: Path) -> None:
        assert codec.get_audio_duration(tmp_path / "missing.wav") == 0.0

    def test_open_non_audio_raises(self, codec: TagCodec, tmp_path: Path) -> None:
        junk = tmp_path / "junk.mp3"
        junk.write_bytes(b"not audio at all")
        with pytest.raises(TagCodecError):
            codec.open(junk)

    def test_untagged_file_has_empty_tags(self, codec: TagCodec, wav_file: Path) -> None:
        tags = codec.read_tags(wav_file)
        assert tags.title is None
        assert tags.artist is None

    def test_basic_tags(self, codec: TagCodec, wav_file: Path) -> None:
        _add_id3_frames(
            wav_file,
            TIT2(encoding=3, text=["Blue in Green"]),
            TPE1(encoding=3, text=["Miles Davis"]),
        )

        tags = codec.read_tags(wav_file)
        assert tags.title == "Blue in Green"
        assert tags.artist == "Miles Davis"
        assert tags.album is None


class TestAcoustIDTags:
    def test_untagged_file(self, codec: TagCodec, wav_file: Path) -> None:
        assert codec.get_acoustid_tags(wav_file) is None
        assert codec.has_acoustid_tags(wav_file) is False

    def test_write_and_read_back(self, codec: TagCodec, wav_file: Path) -> None:
        codec.write_acoustid_tags(wav_file, "AQADtEmUaEkSRZEG", "9ff43b6a-4f16-427c-93c2-92307ca505e0")

        tags = codec.get_acoustid_tags(wav_file)
        assert tags is not None
        assert tags.fingerprint == "AQADtEmUaEkSRZEG"
        assert tags.acoustid_id == "9ff43b6a-4f16-427c-93c2-92307ca505e0"
        assert codec.has_acoustid_tags(wav_file) is True

    def test_fingerprint_only(self, codec: TagCodec, wav_file: Path) -> None:
        codec.write_acoustid_tags(wav_file, "AQADtEmUaEkSRZEG")

        tags = codec.get_acoustid_tags(wav_file)
        assert tags is not None
        assert tags.fingerprint == "AQADtEmUaEkSRZEG"
        assert tags.acoustid_id is None

    def test_overwrite(self, codec: TagCodec, wav_file: Path) -> None:
        codec.write_acoustid_tags(wav_file, "first", "id-1")
        codec.write_acoustid_tags(wav_file, "second", "id-2")

        tags = codec.get_acoustid_tags(wav_file)
        assert tags is not None
        assert tags.fingerprint == "second"
        assert tags.acoustid_id == "id-2"

    def test_fingerprint_without_id_drops_stale_id(
        self, codec: TagCodec, wav_file: Path
    ) -> None:
        codec.write_acoustid_tags(wav_file, "old-fp", "old-id")
        codec.write_acoustid_tags(wav_file, "new-fp")

        tags = codec.get_acoustid_tags(wav_file)
        assert tags is not None
        assert tags.fingerprint == "new-fp"
        assert tags.acoustid_id is None

    def test_audio_survives_write(self, codec: TagCodec, wav_file: Path) -> None:
        codec.write_acoustid_tags(wav_file, "fp")
        assert codec.get_audio_duration(wav_file) == pytest.approx(0.5, abs=0.05)

    def test_write_missing_file_raises(self, codec: TagCodec, tmp_path: Path) -> None:
        with pytest.raises(TagCodecError):
            codec.write_acoustid_tags(tmp_path / "missing.wav", "fp")

    def test_no_temp_dirs_left_behind(self, codec: TagCodec, wav_file: Path) -> None:
        codec.write_acoustid_tags(wav_file, "fp", "id")
        leftovers = [p for p in wav_file.parent.iterdir() if p.name.startswith(".amusic-")]
        assert leftovers == []

    def test_failed_save_leaves_original_untouched(
        self, codec: TagCodec, wav_file: Path
    ) -> None:
        before = wav_file.read_bytes()
        with (
            patch("amusic.audio.tags.TagHandle.save", side_effect=TagCodecError("disk full")),
            pytest.raises(TagCodecError, match="disk full"),
        ):
            codec.write_acoustid_tags(wav_file, "fp", "id")

        assert wav_file.read_bytes() == before
        leftovers = [p for p in wav_file.parent.iterdir() if p.name.startswith(".amusic-")]
        assert leftovers == []


class TestReplayGainTags:
    def test_reads_values_written_by_other_tools(self, codec: TagCodec, wav_file: Path) -> None:
        _add_id3_frames(
            wav_file,
            TXXX(encoding=3, desc="REPLAYGAIN_TRACK_GAIN", text=["-6.50 dB"]),
            TXXX(encoding=3, desc="REPLAYGAIN_TRACK_PEAK", text=["0.988"]),
            TXXX(encoding=3, desc="replaygain_album_gain", text=["-7.10 dB"]),
        )

        tags = codec.get_replaygain_tags(wav_file)
        assert tags is not None
        assert tags.track_gain == "-6.50 dB"
        assert tags.track_peak == "0.988"
        assert tags.album_gain == "-7.10 dB"
        assert tags.album_peak is None

    def test_untagged_file(self, codec: TagCodec, wav_file: Path) -> None:
        assert codec.get_replaygain_tags(wav_file) is None


class TestScopedTempDir:
    def test_removed_on_success(self, tmp_path: Path) -> None:
        with scoped_temp_dir(tmp_path) as tmp_dir:
            (tmp_dir / "file").write_text("x")
            assert tmp_dir.is_dir()
        assert not tmp_dir.exists()

    def test_removed_on_error(self, tmp_path: Path) -> None:
        with pytest.raises(RuntimeError), scoped_temp_dir(tmp_path) as tmp_dir:
            raise RuntimeError("stage failed")
        assert not tmp_dir.exists()

    def test_cleanup_failure_is_logged_not_raised(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        with (
            patch("amusic.audio.tags.shutil.rmtree", side_effect=OSError("busy")),
            scoped_temp_dir(tmp_path),
        ):
            pass
        assert "Failed to clean up temp directory" in caplog.text
