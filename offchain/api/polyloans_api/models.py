"""
Pydantic models for API requests and responses.
"""

import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator

_HEX_RE = re.compile(r"^0x([0-9a-fA-F]{2})*$")
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _check_address(value: str) -> str:
    value = value.strip()
    if not _ADDRESS_RE.match(value):
        raise ValueError("must be a 0x-prefixed 20-byte address")
    return value


def _check_hex(value: str) -> str:
    value = value.strip()
    if not _HEX_RE.match(value):
        raise ValueError("must be 0x-prefixed hex")
    return value


# ============================================================================
# Nonce
# ============================================================================


class NonceResponse(BaseModel):
    """Resolved proxy wallet and the nonce to sign over."""

    proxy: str = Field(..., description="Proxy wallet address")
    nonce: str = Field(..., description="Current wallet nonce (decimal string)")


# ============================================================================
# Relay
# ============================================================================


class RelayRequest(BaseModel):
    """Request to relay an owner-signed SafeTx."""

    proxy: str = Field(..., description="Proxy wallet address (from /get-nonce)")
    to: str = Field(..., description="Target contract address")
    data: str = Field(..., description="Encoded call data (0x...)")
    signature: Optional[str] = Field(None, description="Owner EIP-712 signature (0x...)")
    nonce: Optional[int] = Field(None, ge=0, description="Nonce the signature was made over")

    @field_validator("proxy", "to")
    @classmethod
    def validate_address(cls, value: str) -> str:
        return _check_address(value)

    @field_validator("data", "signature")
    @classmethod
    def validate_hex(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _check_hex(value)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "proxy": "0x06CF8B375BD12E7256F8Da3e695857226b2b36d7",
                    "to": "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
                    "data": "0x095ea7b3...",
                    "signature": "0x...",
                    "nonce": 7,
                }
            ]
        }
    }


class RelayResponse(BaseModel):
    """Successful relay."""

    success: bool = Field(True, description="Always true for a confirmed relay")
    tx_hash: str = Field(..., description="Transaction hash")
    proxy: str = Field(..., description="Proxy wallet address")
    nonce: int = Field(..., description="Nonce consumed by the relay")
    block_number: Optional[int] = Field(None, description="Block the relay was mined in")
    gas_used: Optional[int] = Field(None, description="Gas used")


class RelayErrorResponse(BaseModel):
    """Typed relay failure."""

    success: bool = Field(False)
    error: str = Field(..., description="Failure kind")
    detail: str = Field(..., description="Human-readable message")
    retry_safe: bool = Field(..., description="Whether the same signature may be resubmitted")
    tx_hash: Optional[str] = Field(None, description="Transaction hash, if one was broadcast")


# ============================================================================
# Read views
# ============================================================================


class MarketInfoResponse(BaseModel):
    """Market descriptor for an outcome token."""

    title: str
    slug: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="ok or degraded")
    version: str
    evm_rpc: bool = Field(..., description="EVM RPC reachable")
    chain_id: int
    relayer: Optional[str] = Field(None, description="Relayer account address")
    contracts: dict[str, str] = Field(default_factory=dict)
