"""
Typed failures surfaced by the relay protocol.

Every relay attempt ends either in a receipt or in one of these errors.
`retry_safe` tells the caller whether the same signature may be submitted
again (the wallet sequence was not consumed) or whether the message must be
re-derived and re-signed.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for relay failures."""

    code = "relay_error"
    retry_safe = False

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.message = message
        self.tx_hash = tx_hash
        super().__init__(message)


class IdentityNotFound(RelayError):
    """No smart-contract wallet is known for the end-user address."""

    code = "identity_not_found"

    def __init__(self, user_address: str):
        self.user_address = user_address
        super().__init__(f"No proxy wallet found for {user_address}")


class StaleSequence(RelayError):
    """The signed sequence no longer matches the wallet nonce.

    The caller must re-fetch the sequence and re-sign; bumping the number
    server-side would need a new signature. The wallet reports a signature
    from a key that is not an owner the same way (GS026), so a caller that
    keeps getting this error after re-signing is signing with the wrong key.
    """

    code = "stale_sequence"

    def __init__(
        self,
        message: str,
        expected: Optional[int] = None,
        current: Optional[int] = None,
        tx_hash: Optional[str] = None,
    ):
        self.expected = expected
        self.current = current
        super().__init__(message, tx_hash=tx_hash)


class ContractReverted(RelayError):
    """The wallet or the inner call rejected the transaction."""

    code = "contract_reverted"

    def __init__(self, reason: str, tx_hash: Optional[str] = None):
        self.reason = reason
        super().__init__(f"Execution reverted: {reason}", tx_hash=tx_hash)


class SubmissionFailed(RelayError):
    """Transport failure or timeout before confirmation."""

    code = "submission_failed"
    retry_safe = True


class UpstreamServiceUnavailable(RelayError):
    """A market-data collaborator could not be reached.

    Only raised by enrichment lookups; views catch it and degrade to
    placeholder values.
    """

    code = "upstream_unavailable"
    retry_safe = True
