"""
Services layer for Vidstream.
Contains business logic and orchestration of the transcoding pipeline.
"""
