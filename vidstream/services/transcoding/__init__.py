"""
Transcoding pipeline: probe, encode, hash, describe, manifest and schedule.
"""
