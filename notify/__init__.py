"""notify/ -- Outbound notification delivery for SessionGate.

Layer rule: notify/ imports only stdlib, third-party libraries, and core/.
auth/ never imports notify/; api/main.py injects an EmailSender into
AuthService as its notification sink.
"""
