"""Client side of the loyalty ledger program.

Instructions use Anchor's 8-byte sighash discriminator followed by Borsh
arguments; accounts carry an 8-byte account discriminator before the Borsh
encoded fields.
"""

import hashlib

from borsh_construct import Bool, CStruct, U64
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from .errors import AccountDecodeError
from .models import MerchantAccount, UserAccount

MerchantAccountLayout = CStruct(
    "verified_badge" / Bool,
    "og_badge" / Bool,
    "verified_nft_minted" / Bool,
    "og_nft_minted" / Bool,
    "points" / U64,
    "tx_count" / U64,
)
UserAccountLayout = CStruct(
    "points" / U64,
    "tx_count" / U64,
)
UpdateNftStatusLayout = CStruct(
    "verified_nft_minted" / Bool,
    "og_nft_minted" / Bool,
)


def sighash(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


MERCHANT_DISCRIMINATOR = account_discriminator("MerchantAccount")
USER_DISCRIMINATOR = account_discriminator("UserAccount")


def _strip_discriminator(data: bytes, expected: bytes, name: str) -> bytes:
    if len(data) < 8 or data[:8] != expected:
        raise AccountDecodeError(f"Account data is not a {name}")
    return data[8:]


def decode_merchant_account(data: bytes) -> MerchantAccount:
    body = _strip_discriminator(data, MERCHANT_DISCRIMINATOR, "MerchantAccount")
    try:
        parsed = MerchantAccountLayout.parse(body)
    except Exception as exc:  # noqa: BLE001
        raise AccountDecodeError(f"Malformed MerchantAccount: {exc}") from exc
    return MerchantAccount.model_validate(parsed)


def decode_user_account(data: bytes) -> UserAccount:
    body = _strip_discriminator(data, USER_DISCRIMINATOR, "UserAccount")
    try:
        parsed = UserAccountLayout.parse(body)
    except Exception as exc:  # noqa: BLE001
        raise AccountDecodeError(f"Malformed UserAccount: {exc}") from exc
    return UserAccount.model_validate(parsed)


def encode_merchant_account(account: MerchantAccount) -> bytes:
    return MERCHANT_DISCRIMINATOR + MerchantAccountLayout.build(account.model_dump())


def encode_user_account(account: UserAccount) -> bytes:
    return USER_DISCRIMINATOR + UserAccountLayout.build(account.model_dump())


def build_increment_tx_count_ix(
    program_id: Pubkey,
    merchant_account: Pubkey,
    user_account: Pubkey,
    contract_owner_account: Pubkey,
    owner_signer: Pubkey,
) -> Instruction:
    metas = [
        AccountMeta(pubkey=merchant_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=user_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=contract_owner_account, is_signer=False, is_writable=False),
        AccountMeta(pubkey=owner_signer, is_signer=True, is_writable=True),
    ]
    return Instruction(program_id=program_id, data=sighash("increment_tx_count"), accounts=metas)


def build_update_nft_status_ix(
    program_id: Pubkey,
    merchant_account: Pubkey,
    contract_owner_account: Pubkey,
    owner_signer: Pubkey,
    verified_nft_minted: bool,
    og_nft_minted: bool,
) -> Instruction:
    data = sighash("update_merchant_nft_status") + UpdateNftStatusLayout.build(
        {"verified_nft_minted": verified_nft_minted, "og_nft_minted": og_nft_minted}
    )
    metas = [
        AccountMeta(pubkey=merchant_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=contract_owner_account, is_signer=False, is_writable=False),
        AccountMeta(pubkey=owner_signer, is_signer=True, is_writable=True),
    ]
    return Instruction(program_id=program_id, data=data, accounts=metas)
