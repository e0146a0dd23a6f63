"""
Loyalty Ledger Orchestrator

This module provides:
- Deterministic program-derived addresses for merchants, users and the contract owner
- Freshness-checked loyalty counter increments on the ledger program
- Badge-gated NFT reward issuance across the ledger and the off-chain inventory
- A run log recording how far each issuance got, for reconciliation
"""

from .models import (
    IssuanceReceipt,
    IssuanceRun,
    IssuanceStep,
    MerchantAccount,
    RewardItem,
    RewardType,
    UserAccount,
)
from .context import LedgerContext
from .issuance import RewardIssuanceService
from .service import LoyaltyService

__all__ = [
    "IssuanceReceipt",
    "IssuanceRun",
    "IssuanceStep",
    "MerchantAccount",
    "RewardItem",
    "RewardType",
    "UserAccount",
    "LedgerContext",
    "RewardIssuanceService",
    "LoyaltyService",
]
