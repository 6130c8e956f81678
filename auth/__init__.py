"""auth/ -- Accounts, credentials and sessions for My Assets.

Layer rule: auth/ imports from core/ and audit/ plus third-party libraries.
It does NOT import from api/, listings/, bookings/, messaging/ or terms/.
api/ imports from auth/, not the other way around.
"""
