"""identity/ -- Domain core for user identity and access.

Registration, email verification, login, and role/profile management live in
identity/service.py. Collaborators (store, hasher, token issuer, code
generator, email sender) are described as Protocols in identity/ports.py and
injected at construction.

Layer rule: identity/ imports only stdlib. It does NOT import from api/,
auth/, or core/. auth/ provides the concrete adapters; api/ wires them.
"""
