"""terms/ -- Versioned terms of service and per-user acceptance records.

Layer rule: terms/ imports from core/, audit/ and auth/ (to stamp the user).
"""
