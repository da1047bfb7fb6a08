"""auth/ -- Concrete adapters for the identity core.

SQL storage, bcrypt hashing, JWT issuing, verification codes and SMTP delivery.

Layer rule: auth/ imports only stdlib, third-party libraries and identity/.
It does NOT import from api/ (except dependencies.py, which is FastAPI glue).
api/ imports from auth/, not the other way around.
"""
