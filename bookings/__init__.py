"""bookings/ -- Visit and stay requests against listings.

Layer rule: bookings/ imports only core/ and third-party libraries.
"""
