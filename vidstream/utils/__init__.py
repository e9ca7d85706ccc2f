"""
Utility helpers: URLs, bencoding and retries.
"""
