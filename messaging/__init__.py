"""messaging/ -- Owner/renter conversations and in-app notifications.

Layer rule: messaging/ imports only core/ and third-party libraries.
"""
