"""
Order persistence: SQL primary store, JSON-file fallback store and the
database plumbing they share.
"""
