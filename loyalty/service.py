import logging
from typing import Optional

from . import addresses
from .context import LedgerContext
from .errors import InvalidArgument
from .models import MerchantAccount, UserAccount
from .program import build_increment_tx_count_ix, decode_merchant_account, decode_user_account
from .validator import TransactionValidator

logger = logging.getLogger(__name__)


class LoyaltyService:
    def __init__(self, context: LedgerContext, validator: Optional[TransactionValidator] = None):
        self.context = context
        self.validator = validator or TransactionValidator(context.gateway)

    def increment_tx_count(self, user_address: str, merchant_address: str, transaction_id: str) -> str:
        if not user_address or not merchant_address or not transaction_id:
            raise InvalidArgument("User address, merchant address, and transaction ID are required")
        user = addresses.to_pubkey(user_address, "user address")
        merchant = addresses.to_pubkey(merchant_address, "merchant address")

        logger.info("increment_tx_count user=%s merchant=%s ref=%s", user_address, merchant_address, transaction_id)
        self.validator.validate(transaction_id)

        program_id = self.context.program_id
        user_pda = addresses.user_address(user, program_id)
        merchant_pda = addresses.merchant_address(merchant, program_id)
        owner_pda = addresses.contract_owner_address(program_id)
        logger.info("increment_tx_count_accounts user_pda=%s merchant_pda=%s owner_pda=%s", user_pda, merchant_pda, owner_pda)

        ix = build_increment_tx_count_ix(program_id, merchant_pda, user_pda, owner_pda, self.context.owner)
        signature = self.context.gateway.submit([ix], [self.context.signer])
        logger.info("increment_tx_count_ok user=%s merchant=%s signature=%s", user_address, merchant_address, signature)
        return signature

    def get_merchant_account(self, merchant_address: str) -> Optional[MerchantAccount]:
        merchant = addresses.to_pubkey(merchant_address, "merchant address")
        data = self.context.gateway.get_account_state(addresses.merchant_address(merchant, self.context.program_id))
        return decode_merchant_account(data) if data is not None else None

    def get_user_account(self, user_address: str) -> Optional[UserAccount]:
        user = addresses.to_pubkey(user_address, "user address")
        data = self.context.gateway.get_account_state(addresses.user_address(user, self.context.program_id))
        return decode_user_account(data) if data is not None else None
