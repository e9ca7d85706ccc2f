"""
Vidstream: HLS transcoding and publication backend.
"""
__version__ = "1.0.0"
