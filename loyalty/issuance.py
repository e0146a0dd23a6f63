"""Badge-gated reward issuance.

Issuing a reward touches three systems of record in a fixed order:

1. read the merchant's on-chain account and check eligibility
2. claim one reward item in the off-chain inventory
3. transfer the item's token from the owner to the merchant
4. flip the merchant's minted flag through the ledger program
5. record the item as consumed off-chain

Each step commits before the next starts and nothing is rolled back. Every
run is recorded with the furthest step it completed, so partial runs can be
found and repaired out of band. A failure to record consumption after the
on-chain update succeeded does not fail the issuance.
"""

import logging
from typing import Optional, Union

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer,
)

from . import addresses
from .context import LedgerContext
from .errors import (
    InvalidArgument,
    NotEligible,
    ResourceExhausted,
    SourceAccountEmpty,
)
from .inventory import InventoryStore
from .models import (
    IssuanceReceipt,
    IssuanceRun,
    IssuanceStep,
    MerchantAccount,
    RewardItem,
    RewardType,
    RunStatus,
)
from .program import build_update_nft_status_ix, decode_merchant_account
from .runlog import InMemoryRunLog, RunLog

logger = logging.getLogger(__name__)


class RewardIssuanceService:
    def __init__(
        self,
        context: LedgerContext,
        inventory: InventoryStore,
        runs: Optional[RunLog] = None,
    ):
        self.context = context
        self.inventory = inventory
        self.runs = runs or InMemoryRunLog()

    def issue(self, merchant_address: str, reward_type: Union[RewardType, str]) -> IssuanceReceipt:
        if not merchant_address or not reward_type:
            raise InvalidArgument("Merchant address and NFT type are required")
        try:
            reward_type = RewardType(reward_type)
        except ValueError as exc:
            raise InvalidArgument('Invalid NFT type. Must be either "verified" or "og"') from exc
        merchant = addresses.to_pubkey(merchant_address, "merchant address")

        run = self.runs.start(merchant_address, reward_type)
        logger.info("issue_start run=%s merchant=%s type=%s", run.run_id, merchant_address, reward_type.value)
        try:
            return self._run(run, merchant, reward_type)
        except Exception as exc:  # noqa: BLE001
            failed = self.runs.finish(run.run_id, RunStatus.FAILED, error=str(exc))
            log = logger.error if isinstance(exc, ResourceExhausted) else logger.warning
            log(
                "issue_failed run=%s merchant=%s type=%s furthest_step=%s reward=%s error=%s",
                run.run_id,
                merchant_address,
                reward_type.value,
                failed.furthest_step.value,
                failed.reward_address,
                exc,
            )
            raise

    def _run(self, run: IssuanceRun, merchant: Pubkey, reward_type: RewardType) -> IssuanceReceipt:
        run_id = run.run_id
        program_id = self.context.program_id
        merchant_pda = addresses.merchant_address(merchant, program_id)
        owner_pda = addresses.contract_owner_address(program_id)

        account = self._load_merchant(merchant_pda)
        self.runs.advance(run_id, IssuanceStep.MERCHANT_LOADED)
        logger.info("issue_merchant_loaded run=%s merchant_pda=%s account=%s", run_id, merchant_pda, account)

        reason = account.ineligibility_reason(reward_type)
        if reason:
            raise NotEligible(f"Not eligible to mint NFT: {reason}")
        self.runs.advance(run_id, IssuanceStep.ELIGIBILITY_CHECKED)
        logger.info("issue_eligible run=%s merchant=%s type=%s", run_id, merchant, reward_type.value)

        item = self.inventory.reserve_one_unreserved(reward_type, claim_id=run_id)
        self.runs.advance(run_id, IssuanceStep.INVENTORY_RESERVED, reward_address=item.address)
        logger.info("issue_reserved run=%s reward=%s", run_id, item.address)

        transfer_signature = self._transfer_asset(run_id, item, merchant)
        self.runs.advance(run_id, IssuanceStep.ASSET_TRANSFERRED, transfer_signature=transfer_signature)

        verified, og = account.status_flags_after(reward_type)
        ix = build_update_nft_status_ix(program_id, merchant_pda, owner_pda, self.context.owner, verified, og)
        status_signature = self.context.gateway.submit([ix], [self.context.signer])
        self.runs.advance(run_id, IssuanceStep.STATUS_UPDATED, status_signature=status_signature)
        logger.info(
            "issue_status_updated run=%s merchant_pda=%s verified=%s og=%s signature=%s",
            run_id, merchant_pda, verified, og, status_signature,
        )

        consumed = True
        try:
            self.inventory.mark_consumed(item.address)
        except Exception as exc:  # noqa: BLE001  the reward is already on-chain
            consumed = False
            self.runs.finish(run_id, RunStatus.COMPLETED_WITH_WARNINGS, error=str(exc))
            logger.exception(
                "issue_consume_mark_failed run=%s reward=%s merchant=%s status_signature=%s error=%s",
                run_id, item.address, merchant, status_signature, exc,
            )
        else:
            self.runs.advance(run_id, IssuanceStep.CONSUMPTION_RECORDED)
            self.runs.finish(run_id, RunStatus.COMPLETED)

        logger.info("issue_done run=%s reward=%s consumed=%s", run_id, item.address, consumed)
        return IssuanceReceipt(
            run_id=run_id,
            reward_type=reward_type,
            reward_address=item.address,
            transfer_signature=transfer_signature,
            on_chain_tx=status_signature,
            consumption_recorded=consumed,
        )

    def _load_merchant(self, merchant_pda: Pubkey) -> MerchantAccount:
        data = self.context.gateway.get_account_state(merchant_pda)
        if data is None:
            raise NotEligible("Not eligible to mint NFT: Merchant account not found")
        return decode_merchant_account(data)

    def _transfer_asset(self, run_id: str, item: RewardItem, merchant: Pubkey) -> str:
        gateway = self.context.gateway
        owner = self.context.owner
        mint = addresses.to_pubkey(item.address, "reward address")
        source = get_associated_token_address(owner, mint)
        dest = get_associated_token_address(merchant, mint)

        balance = gateway.get_token_balance(source)
        if not balance:
            raise SourceAccountEmpty(f"Owner token account {source} holds no units of {mint}")

        instructions: list[Instruction] = []
        if gateway.get_account_state(dest) is None:
            instructions.append(create_associated_token_account(owner, merchant, mint))
        instructions.append(
            transfer(TransferParams(program_id=TOKEN_PROGRAM_ID, source=source, dest=dest, owner=owner, amount=1))
        )
        logger.info(
            "issue_transfer run=%s mint=%s source=%s dest=%s create_dest=%s",
            run_id, mint, source, dest, len(instructions) > 1,
        )
        signature = gateway.submit(instructions, [self.context.signer])
        logger.info("issue_transferred run=%s mint=%s signature=%s", run_id, mint, signature)
        return signature
