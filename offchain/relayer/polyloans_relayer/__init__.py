"""
PolyLoans Relayer

Relays owner-signed Safe transactions for PolyLoans proxy wallets. The
wallet owner signs an EIP-712 SafeTx off-chain; the relayer account submits
execTransaction and pays gas.

Usage:
    # Print a user's proxy wallet and nonce
    polyloans-relayer nonce 0x...

    # Authorize a new market for a wallet (operator)
    polyloans-relayer enroll --market 0x... --wallet 0x...

    # Show missing grants without sending transactions
    polyloans-relayer enroll --market 0x... --wallet 0x... --dry-run
"""

__version__ = "0.2.0"

from .codec import DelegatedCall, Operation, build_typed_data, encode_delegated_call, sign_delegated_call
from .config import RelayerConfig, Settings
from .enrollment import EnrollmentResult, MarketEnrollment
from .errors import (
    ContractReverted,
    IdentityNotFound,
    RelayError,
    StaleSequence,
    SubmissionFailed,
    UpstreamServiceUnavailable,
)
from .evm import SafeChainClient
from .executor import RelayExecutor, RelayReceipt
from .identity import IdentityResolver, ResolutionCache
from .market_data import MarketDataClient
from .relayer import PolyLoansRelayer
from .sequencer import NonceSequencer

__all__ = [
    "__version__",
    "DelegatedCall",
    "Operation",
    "build_typed_data",
    "encode_delegated_call",
    "sign_delegated_call",
    "RelayerConfig",
    "Settings",
    "EnrollmentResult",
    "MarketEnrollment",
    "ContractReverted",
    "IdentityNotFound",
    "RelayError",
    "StaleSequence",
    "SubmissionFailed",
    "UpstreamServiceUnavailable",
    "SafeChainClient",
    "RelayExecutor",
    "RelayReceipt",
    "IdentityResolver",
    "ResolutionCache",
    "MarketDataClient",
    "PolyLoansRelayer",
    "NonceSequencer",
]
