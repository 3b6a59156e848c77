"""
PolyLoans Relay API - HTTP front for the proxy wallet relayer.

Provides REST endpoints for:
- Proxy wallet nonce lookup
- Relaying owner-signed transactions
- Portfolio and market info
- Health checks
"""

__version__ = "0.2.0"
