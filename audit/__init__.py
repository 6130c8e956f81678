"""audit/ -- Append-only audit trail for state-changing actions.

Layer rule: audit/ imports only core/ and third-party libraries.
Services and routes import from audit/, not the other way around.
"""
