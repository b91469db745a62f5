"""
db - SQLite connection management and local table schema.
"""
