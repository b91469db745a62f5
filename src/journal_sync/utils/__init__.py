"""
utils - Small helpers shared across journal_sync.
"""
