from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from solders.pubkey import Pubkey


class RewardType(str, Enum):
    VERIFIED = "verified"
    OG = "og"


class SeedTag(str, Enum):
    CONTRACT_OWNER = "contract_owner"
    MERCHANT = "merchant"
    USER = "user"


class IssuanceStep(str, Enum):
    STARTED = "started"
    MERCHANT_LOADED = "merchant_loaded"
    ELIGIBILITY_CHECKED = "eligibility_checked"
    INVENTORY_RESERVED = "inventory_reserved"
    ASSET_TRANSFERRED = "asset_transferred"
    STATUS_UPDATED = "status_updated"
    CONSUMPTION_RECORDED = "consumption_recorded"


ISSUANCE_STEP_ORDER = list(IssuanceStep)


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    FAILED = "failed"


@dataclass(frozen=True)
class AccountSeed:
    tag: SeedTag
    owner_key: Optional[Pubkey] = None

    def seeds(self) -> list[bytes]:
        if self.owner_key is None:
            return [self.tag.value.encode()]
        return [self.tag.value.encode(), bytes(self.owner_key)]


class MerchantAccount(BaseModel):
    verified_badge: bool = False
    og_badge: bool = False
    verified_nft_minted: bool = False
    og_nft_minted: bool = False
    points: int = 0
    tx_count: int = 0

    model_config = ConfigDict(from_attributes=True)

    def ineligibility_reason(self, reward_type: RewardType) -> Optional[str]:
        if reward_type == RewardType.VERIFIED:
            if not self.verified_badge:
                return "Merchant does not have verified badge"
            if self.verified_nft_minted:
                return "Verified NFT already minted"
        else:
            if not self.og_badge:
                return "Merchant does not have OG badge"
            if self.og_nft_minted:
                return "OG NFT already minted"
        return None

    def status_flags_after(self, reward_type: RewardType) -> tuple[bool, bool]:
        """(verified_nft_minted, og_nft_minted) once ``reward_type`` is issued."""
        verified = True if reward_type == RewardType.VERIFIED else self.verified_nft_minted
        og = True if reward_type == RewardType.OG else self.og_nft_minted
        return verified, og


class UserAccount(BaseModel):
    points: int = 0
    tx_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class RewardItem(BaseModel):
    id: Any = None
    address: str
    reward_type: RewardType
    reserved: bool = False
    claimed_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    def is_available(self) -> bool:
        return not self.reserved and self.claimed_by is None


class LedgerTransactionRecord(BaseModel):
    signature: str
    slot: Optional[int] = None
    block_time: Optional[int] = None


class LatestBlockhash(BaseModel):
    blockhash: str
    last_valid_block_height: int = Field(..., alias="lastValidBlockHeight")

    model_config = ConfigDict(populate_by_name=True)


class LatestBlock(BaseModel):
    blockhash: str
    block_time: Optional[int] = Field(default=None, alias="blockTime")
    parent_slot: int = Field(..., alias="parentSlot")
    previous_blockhash: str = Field(..., alias="previousBlockhash")
    transactions: list[dict] = Field(default_factory=list)
    slot: int

    model_config = ConfigDict(populate_by_name=True)


class IssuanceReceipt(BaseModel):
    run_id: str
    reward_type: RewardType
    reward_address: str
    transfer_signature: str
    on_chain_tx: str
    consumption_recorded: bool = True


class IssuanceRun(BaseModel):
    run_id: str
    merchant_address: str
    reward_type: RewardType
    status: RunStatus = RunStatus.RUNNING
    furthest_step: IssuanceStep = IssuanceStep.STARTED
    reward_address: Optional[str] = None
    transfer_signature: Optional[str] = None
    status_signature: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime
    updated_at: datetime

    def reached(self, step: IssuanceStep) -> bool:
        return ISSUANCE_STEP_ORDER.index(self.furthest_step) >= ISSUANCE_STEP_ORDER.index(step)

    def needs_reconciliation(self) -> bool:
        if self.status == RunStatus.COMPLETED_WITH_WARNINGS:
            return True
        return self.status == RunStatus.FAILED and self.reached(IssuanceStep.INVENTORY_RESERVED)


class IncrementTransactionRequest(BaseModel):
    user_address: Optional[str] = Field(default=None, alias="userAddress")
    merchant_address: Optional[str] = Field(default=None, alias="merchantAddress")
    transaction_id: Optional[str] = Field(default=None, alias="transactionId")

    model_config = ConfigDict(populate_by_name=True, json_schema_extra={
        "example": {
            "userAddress": "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU",
            "merchantAddress": "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM",
            "transactionId": "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW",
        }
    })


class IncrementTransactionResponse(BaseModel):
    transaction_id: str = Field(..., alias="transactionId")

    model_config = ConfigDict(populate_by_name=True)


class MintNftRequest(BaseModel):
    merchant_address: Optional[str] = Field(default=None, alias="merchantAddress")
    nft_type: Optional[str] = Field(default=None, alias="nftType")

    model_config = ConfigDict(populate_by_name=True)


class MintNftResponse(BaseModel):
    transaction_id: str = Field(..., alias="transactionId")
    nft_type: RewardType = Field(..., alias="nftType")
    transfer_signature: str = Field(..., alias="transferSignature")
    reward_address: str = Field(..., alias="rewardAddress")
    run_id: str = Field(..., alias="runId")
    consumption_recorded: bool = Field(..., alias="consumptionRecorded")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_receipt(cls, receipt: IssuanceReceipt) -> "MintNftResponse":
        return cls(
            transaction_id=receipt.on_chain_tx,
            nft_type=receipt.reward_type,
            transfer_signature=receipt.transfer_signature,
            reward_address=receipt.reward_address,
            run_id=receipt.run_id,
            consumption_recorded=receipt.consumption_recorded,
        )
