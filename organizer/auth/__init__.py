"""
Authentication pipeline for the Organizer API.

Design goals:
- One upstream identity maps to exactly one local user, even under concurrent first logins.
- Server-side sessions: the cookie carries only a signed, opaque session id.
- Every request gets an explicit RequestContext; absence of a principal is a value, not an error.
"""
