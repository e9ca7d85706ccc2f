"""
Temp workspace and public storage publication.
"""
