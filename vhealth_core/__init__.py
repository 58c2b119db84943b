"""
V-Health Core Package
=====================
Content-protection primitives for the V-Health web application.

Provides:
- RSA-2048 key pair loading and generation
- Hybrid RSA-OAEP + AES-256-GCM payload encryption
- RSA-PSS signatures with digest-first verification
- Ephemeral encrypted cache with age-based eviction
- Tamper-evident signature archive (SQLite default) with audit trail
"""
