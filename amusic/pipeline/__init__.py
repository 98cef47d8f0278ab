"""Batch processing pipeline.

Contains:
- folders: Album/singles classification of input paths
- track: Per-track encode, ReplayGain and AcoustID stages
- pool: Bounded-concurrency worker pool for track processing
- stats: Outcome counters and run summaries
"""
