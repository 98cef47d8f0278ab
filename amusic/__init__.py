"""amusic: ReplayGain, transcoding, and AcoustID tagging for music libraries."""

__version__ = "0.1.0"
