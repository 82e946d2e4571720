"""auth/ -- Credential and session lifecycle package for SessionGate.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or notify/. The notification sink is injected
into AuthService by the caller; api/ imports from auth/, never the reverse.
"""
