"""Tests for the per-track pipeline (amusic.pipeline.track)."""

import asyncio
import wave
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from amusic.audio.encoding import TranscodeError
from amusic.audio.fingerprint import FpcalcResult
from amusic.audio.replaygain import AlbumGain, ReplayGainResult
from amusic.audio.tags import TagCodec
from amusic.identify.acoustid import LookupResult, ResultItem
from amusic.identify.tagging import ProcessResultStatus
from amusic.pipeline.track import (
    EncodeSkipReason,
    TrackProcessingOptions,
    batch_process_tracks,
    process_album,
    process_track,
)


@pytest.fixture
def codec() -> MagicMock:
    return MagicMock(spec=TagCodec)


@pytest.fixture
def flac(tmp_path: Path) -> Path:
    path = tmp_path / "Album" / "01.flac"
    path.parent.mkdir()
    path.write_bytes(b"fLaC")
    return path


@pytest.fixture
def mp3(tmp_path: Path) -> Path:
    path = tmp_path / "Album" / "02.mp3"
    path.parent.mkdir(exist_ok=True)
    path.write_bytes(b"ID3")
    return path


@pytest.fixture
def mock_encode():
    async def _write_output(input_path: Path, output_path: Path) -> None:
        Path(output_path).write_bytes(b"m4a")

    with patch(
        "amusic.pipeline.track.encode_to_m4a", new_callable=AsyncMock, side_effect=_write_output
    ) as mock:
        yield mock


@pytest.fixture
def mock_tagging():
    with patch(
        "amusic.pipeline.track.process_acoustid_tagging",
        new_callable=AsyncMock,
        return_value=ProcessResultStatus.PROCESSED,
    ) as mock:
        yield mock


# ---------------------------------------------------------------------------
# process_track
# ---------------------------------------------------------------------------


class TestProcessTrackEncoding:
    async def test_encodes_lossless_and_tags_output(
        self, flac: Path, codec: MagicMock, mock_encode: AsyncMock, mock_tagging: AsyncMock
    ) -> None:
        options = TrackProcessingOptions(
            encode=True, process_acoustid=True, acoustid_api_key="key", quiet=True
        )

        result = await process_track(flac, options, codec=codec)

        output = flac.with_suffix(".m4a")
        assert result.encoded is True
        assert result.output_path == output
        assert result.encoding_error is None
        mock_encode.assert_awaited_once_with(flac, output)
        # AcoustID runs on the encoded file
        assert mock_tagging.call_args.args[0] == output
        assert result.acoustid_status == ProcessResultStatus.PROCESSED

    async def test_lossy_source_refused_but_other_stages_run(
        self, mp3: Path, codec: MagicMock, mock_encode: AsyncMock, mock_tagging: AsyncMock
    ) -> None:
        options = TrackProcessingOptions(
            encode=True, process_acoustid=True, acoustid_api_key="key", quiet=True
        )

        result = await process_track(mp3, options, codec=codec)

        assert result.encoded is False
        assert result.encoding_error is not None
        assert result.encode_skip_reason == EncodeSkipReason.LOSSY_FORMAT
        mock_encode.assert_not_called()
        assert mock_tagging.call_args.args[0] == mp3
        assert result.acoustid_status == ProcessResultStatus.PROCESSED

    async def test_force_lossy_transcodes(
        self, mp3: Path, codec: MagicMock, mock_encode: AsyncMock
    ) -> None:
        options = TrackProcessingOptions(encode=True, force_lossy_transcodes=True, quiet=True)

        result = await process_track(mp3, options, codec=codec)

        assert result.encoded is True
        mock_encode.assert_awaited_once()

    async def test_existing_output_skipped(
        self, flac: Path, codec: MagicMock, mock_encode: AsyncMock
    ) -> None:
        flac.with_suffix(".m4a").write_bytes(b"already here")
        options = TrackProcessingOptions(encode=True, quiet=True)

        result = await process_track(flac, options, codec=codec)

        assert result.encode_skip_reason == EncodeSkipReason.OUTPUT_EXISTS
        assert result.encoded is False
        mock_encode.assert_not_called()

    async def test_already_m4a(self, tmp_path: Path, codec: MagicMock, mock_encode: AsyncMock) -> None:
        source = tmp_path / "01.m4a"
        source.write_bytes(b"m4a")
        codec.is_lossless.return_value = True
        options = TrackProcessingOptions(encode=True, quiet=True)

        result = await process_track(source, options, codec=codec)

        assert result.encode_skip_reason == EncodeSkipReason.ALREADY_M4A
        mock_encode.assert_not_called()

    async def test_dry_run_does_not_encode(
        self, flac: Path, codec: MagicMock, mock_encode: AsyncMock, mock_tagging: AsyncMock
    ) -> None:
        options = TrackProcessingOptions(
            encode=True,
            process_acoustid=True,
            acoustid_api_key="key",
            dry_run=True,
            quiet=True,
        )

        result = await process_track(flac, options, codec=codec)

        assert result.encoded is True
        mock_encode.assert_not_called()
        assert not flac.with_suffix(".m4a").exists()
        assert mock_tagging.call_args.args[0] == flac
        assert mock_tagging.call_args.kwargs["dry_run"] is True

    async def test_encode_failure_continues_on_original(
        self, flac: Path, codec: MagicMock, mock_tagging: AsyncMock
    ) -> None:
        options = TrackProcessingOptions(
            encode=True, process_acoustid=True, acoustid_api_key="key", quiet=True
        )

        with patch(
            "amusic.pipeline.track.encode_to_m4a",
            new_callable=AsyncMock,
            side_effect=TranscodeError("Encoding failed (exit 1)"),
        ):
            result = await process_track(flac, options, codec=codec)

        assert result.encoded is False
        assert result.encoding_error == "Encoding failed (exit 1)"
        assert mock_tagging.call_args.args[0] == flac

    async def test_output_directory_is_created(
        self, flac: Path, tmp_path: Path, codec: MagicMock, mock_encode: AsyncMock
    ) -> None:
        out = tmp_path / "out"
        options = TrackProcessingOptions(
            encode=True,
            output_directory=out,
            preserve_structure=True,
            base_path=tmp_path,
            quiet=True,
        )

        result = await process_track(flac, options, codec=codec)

        assert result.output_path == out / "Album" / "01.m4a"
        assert result.output_path.exists()


class TestProcessTrackStages:
    async def test_no_stages_enabled(self, flac: Path, codec: MagicMock) -> None:
        result = await process_track(flac, TrackProcessingOptions(quiet=True), codec=codec)

        assert result.input_path == flac
        assert result.encoded is False
        assert result.acoustid_status is None
        assert result.replaygain_applied is False
        assert result.duration_seconds >= 0

    async def test_acoustid_skipped_without_api_key(
        self, flac: Path, codec: MagicMock, mock_tagging: AsyncMock
    ) -> None:
        options = TrackProcessingOptions(process_acoustid=True, quiet=True)

        result = await process_track(flac, options, codec=codec)

        mock_tagging.assert_not_called()
        assert result.acoustid_status is None

    async def test_acoustid_exception_becomes_failed(self, flac: Path, codec: MagicMock) -> None:
        options = TrackProcessingOptions(process_acoustid=True, acoustid_api_key="key", quiet=True)

        with patch(
            "amusic.pipeline.track.process_acoustid_tagging",
            new_callable=AsyncMock,
            side_effect=RuntimeError("unexpected"),
        ):
            result = await process_track(flac, options, codec=codec)

        assert result.acoustid_status == ProcessResultStatus.FAILED
        assert result.acoustid_error == "unexpected"

    async def test_replaygain_applied_from_album_data(self, flac: Path, codec: MagicMock) -> None:
        options = TrackProcessingOptions(
            calculate_gain=True,
            album_gain_data={flac: AlbumGain(album_gain=-6.0, album_peak=0.98)},
            quiet=True,
        )

        result = await process_track(flac, options, codec=codec)

        assert result.replaygain_applied is True


# ---------------------------------------------------------------------------
# batch_process_tracks / process_album
# ---------------------------------------------------------------------------


class TestBatchProcessTracks:
    async def test_results_in_input_order_with_progress(
        self, tmp_path: Path, codec: MagicMock
    ) -> None:
        paths = [tmp_path / f"{i:02d}.flac" for i in range(5)]
        progress: list[tuple[int, int]] = []

        results = await batch_process_tracks(
            paths,
            TrackProcessingOptions(quiet=True),
            codec=codec,
            concurrency=2,
            on_progress=lambda done, total, _path: progress.append((done, total)),
        )

        assert [r.input_path for r in results] == paths
        assert progress == [(i, 5) for i in range(1, 6)]

    async def test_concurrency_bound(self, tmp_path: Path, codec: MagicMock) -> None:
        in_flight = 0
        peak = 0

        async def _slow(path, options, *, codec, client=None):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return MagicMock(input_path=path)

        with patch("amusic.pipeline.track.process_track", side_effect=_slow):
            await batch_process_tracks(
                [tmp_path / f"{i}.flac" for i in range(6)],
                TrackProcessingOptions(quiet=True),
                codec=codec,
                concurrency=2,
            )

        assert peak == 2

    async def test_empty(self, codec: MagicMock) -> None:
        assert await batch_process_tracks([], TrackProcessingOptions(), codec=codec) == []


class TestProcessAlbum:
    async def test_gain_computed_once_and_shared(
        self, tmp_path: Path, codec: MagicMock
    ) -> None:
        files = [tmp_path / "01.flac", tmp_path / "02.flac"]
        gain = AlbumGain(album_gain=-5.3, album_peak=0.99)
        gain_result = ReplayGainResult(success=True, album={f: gain for f in files})

        with patch(
            "amusic.pipeline.track.calculate_replaygain",
            new_callable=AsyncMock,
            return_value=gain_result,
        ) as mock_gain:
            results = await process_album(
                tmp_path, files, TrackProcessingOptions(calculate_gain=True, quiet=True), codec=codec
            )

        mock_gain.assert_awaited_once()
        assert all(r.replaygain_applied for r in results)
        assert all(r.replaygain_error is None for r in results)

    async def test_gain_failure_recorded_on_every_track(
        self, tmp_path: Path, codec: MagicMock
    ) -> None:
        files = [tmp_path / "01.flac", tmp_path / "02.flac"]

        with patch(
            "amusic.pipeline.track.calculate_replaygain",
            new_callable=AsyncMock,
            return_value=ReplayGainResult(success=False, error="rsgain exited with code 1"),
        ):
            results = await process_album(
                tmp_path, files, TrackProcessingOptions(calculate_gain=True, quiet=True), codec=codec
            )

        assert len(results) == 2
        assert all(r.replaygain_error == "rsgain exited with code 1" for r in results)
        assert not any(r.replaygain_applied for r in results)

    async def test_no_gain_requested(self, tmp_path: Path, codec: MagicMock) -> None:
        with patch("amusic.pipeline.track.calculate_replaygain", new_callable=AsyncMock) as mock_gain:
            results = await process_album(
                tmp_path, [tmp_path / "01.flac"], TrackProcessingOptions(quiet=True), codec=codec
            )

        mock_gain.assert_not_called()
        assert len(results) == 1


# ---------------------------------------------------------------------------
# process_track against real files
# ---------------------------------------------------------------------------


def _write_silent_wav(path: Path, seconds: float = 1.0) -> Path:
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(2)
        wf.setsampwidth(2)
        wf.setframerate(8000)
        wf.writeframes(b"\x00\x00\x00\x00" * int(8000 * seconds))
    return path


class TestProcessTrackTagBytes:
    @pytest.fixture
    def wav(self, tmp_path: Path) -> Path:
        return _write_silent_wav(tmp_path / "quiet.wav")

    @pytest.fixture
    def client(self) -> AsyncMock:
        mock = AsyncMock()
        mock.lookup.return_value = LookupResult(
            status="ok", results=[ResultItem(id="acoustid-1", score=0.97)]
        )
        return mock

    @pytest.fixture(autouse=True)
    def fpcalc(self):
        with patch(
            "amusic.identify.tagging.generate_fingerprint",
            new_callable=AsyncMock,
            return_value=FpcalcResult(fingerprint="AQADtNQYhYkYnEii", duration=1.0),
        ) as mock:
            yield mock

    @staticmethod
    def _options(**overrides) -> TrackProcessingOptions:
        return TrackProcessingOptions(
            process_acoustid=True, acoustid_api_key="key", quiet=True, **overrides
        )

    async def test_dry_run_leaves_bytes_identical(self, wav: Path, client: AsyncMock) -> None:
        before = wav.read_bytes()

        result = await process_track(
            wav, self._options(dry_run=True), codec=TagCodec(), client=client
        )

        assert result.acoustid_status == ProcessResultStatus.PROCESSED
        client.lookup.assert_awaited_once()
        assert wav.read_bytes() == before

    async def test_second_run_skips_and_leaves_bytes_identical(
        self, wav: Path, client: AsyncMock
    ) -> None:
        codec = TagCodec()

        first = await process_track(wav, self._options(), codec=codec, client=client)
        after_first = wav.read_bytes()
        second = await process_track(wav, self._options(), codec=codec, client=client)

        assert first.acoustid_status == ProcessResultStatus.PROCESSED
        assert second.acoustid_status == ProcessResultStatus.SKIPPED
        assert wav.read_bytes() == after_first
        tags = codec.get_acoustid_tags(wav)
        assert tags is not None
        assert tags.acoustid_id == "acoustid-1"
