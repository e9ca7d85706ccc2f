"""
Database-backed repositories: plain async functions taking an AsyncSession.
"""
