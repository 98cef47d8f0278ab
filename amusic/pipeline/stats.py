"""Outcome counters for a processing run."""

from dataclasses import dataclass, field
from typing import assert_never

from amusic.identify.tagging import ProcessResultStatus
from amusic.pipeline.track import EncodeSkipReason, TrackProcessingResult


@dataclass
class ProcessingSummary:
    processed: int
    skipped: int
    failed: int
    lookup_failed: int
    no_results: int
    encode_failed: int
    errors: int
    dry_run: bool = False

    @property
    def total(self) -> int:
        return (
            self.processed
            + self.skipped
            + self.failed
            + self.lookup_failed
            + self.no_results
            + self.encode_failed
            + self.errors
        )


@dataclass
class ProcessingStats:
    """Additive per-run counters.

    The five AcoustID outcomes are counted by status. Two extra counters
    cover pipeline stages that end without an AcoustID status: encode
    failures and generic failures. Counters only ever go up.
    """

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    lookup_failed: int = 0
    no_results: int = 0
    encode_failed: int = 0
    errors: int = 0

    def increment(self, status: ProcessResultStatus) -> None:
        match status:
            case ProcessResultStatus.PROCESSED:
                self.processed += 1
            case ProcessResultStatus.SKIPPED:
                self.skipped += 1
            case ProcessResultStatus.FAILED:
                self.failed += 1
            case ProcessResultStatus.LOOKUP_FAILED:
                self.lookup_failed += 1
            case ProcessResultStatus.NO_RESULTS:
                self.no_results += 1
            case _:
                assert_never(status)

    def increment_success(self) -> None:
        self.processed += 1

    def increment_skipped(self) -> None:
        self.skipped += 1

    def increment_failed(self) -> None:
        """Count a failure that carries no AcoustID status."""
        self.errors += 1

    def increment_encode_failed(self) -> None:
        self.encode_failed += 1

    def record(self, result: TrackProcessingResult) -> None:
        """Count one track result, exactly once.

        An encode error takes precedence, then the AcoustID status, then a
        ReplayGain error. A track with none of these counts as processed.
        """
        if result.encoding_error:
            self.increment_encode_failed()
        elif result.acoustid_status is not None:
            self.increment(result.acoustid_status)
        elif result.replaygain_error:
            self.increment_failed()
        else:
            self.increment_success()

    def summary(self, dry_run: bool = False) -> ProcessingSummary:
        return ProcessingSummary(
            processed=self.processed,
            skipped=self.skipped,
            failed=self.failed,
            lookup_failed=self.lookup_failed,
            no_results=self.no_results,
            encode_failed=self.encode_failed,
            errors=self.errors,
            dry_run=dry_run,
        )


@dataclass
class EncodingStats:
    """Counters for encode-only runs, with a breakdown of skip reasons."""

    processed: int = 0
    failed: int = 0
    skip_reasons: dict[EncodeSkipReason, int] = field(
        default_factory=lambda: {reason: 0 for reason in EncodeSkipReason}
    )

    def increment_success(self) -> None:
        self.processed += 1

    def increment_failed(self) -> None:
        self.failed += 1

    def increment_skipped(self, reason: EncodeSkipReason) -> None:
        self.skip_reasons[reason] += 1

    @property
    def total_skipped(self) -> int:
        return sum(self.skip_reasons.values())

    def record(self, result: TrackProcessingResult) -> None:
        # A lossy refusal carries both an error and a skip reason; it is a skip
        if result.encode_skip_reason is not None:
            self.increment_skipped(result.encode_skip_reason)
        elif result.encoding_error:
            self.increment_failed()
        elif result.encoded:
            self.increment_success()
