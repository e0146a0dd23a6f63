"""
Shared fixtures: an in-process ledger double and a counting inventory.
"""

from typing import Optional

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from loyalty import addresses
from loyalty.context import LedgerContext
from loyalty.inventory import InMemoryInventoryStore
from loyalty.models import (
    LatestBlock,
    LatestBlockhash,
    LedgerTransactionRecord,
    MerchantAccount,
    RewardItem,
    RewardType,
)
from loyalty.program import encode_merchant_account

NOW = 1_700_000_000


class FakeLedgerGateway:
    def __init__(self):
        self.accounts: dict[str, bytes] = {}
        self.token_balances: dict[str, int] = {}
        self.transactions: dict[str, LedgerTransactionRecord] = {}
        self.submitted: list[list] = []
        self.submit_failures: dict[int, Exception] = {}
        self.lookup_error: Optional[Exception] = None
        self.transaction_lookups = 0
        self.closed = False

    def add_transaction(self, ref: str, block_time: Optional[int]) -> None:
        self.transactions[ref] = LedgerTransactionRecord(signature=ref, slot=1, block_time=block_time)

    def get_transaction(self, ref: str) -> Optional[LedgerTransactionRecord]:
        self.transaction_lookups += 1
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.transactions.get(ref)

    def get_account_state(self, address) -> Optional[bytes]:
        return self.accounts.get(str(address))

    def get_token_balance(self, address) -> Optional[int]:
        return self.token_balances.get(str(address))

    def get_latest_blockhash(self) -> LatestBlockhash:
        return LatestBlockhash(blockhash="11111111111111111111111111111111", last_valid_block_height=10)

    def get_latest_block(self) -> LatestBlock:
        return LatestBlock(
            blockhash="11111111111111111111111111111111",
            block_time=NOW,
            parent_slot=9,
            previous_blockhash="11111111111111111111111111111111",
            slot=10,
        )

    def submit(self, instructions, signers) -> str:
        self.submitted.append(list(instructions))
        call = len(self.submitted)
        if call in self.submit_failures:
            raise self.submit_failures[call]
        return f"sig-{call}"

    def close(self) -> None:
        self.closed = True


class CountingInventory(InMemoryInventoryStore):
    def __init__(self, items=None):
        super().__init__(items)
        self.reserve_calls = 0
        self.consume_calls: list[str] = []
        self.consume_error: Optional[Exception] = None

    def reserve_one_unreserved(self, reward_type, claim_id):
        self.reserve_calls += 1
        return super().reserve_one_unreserved(reward_type, claim_id)

    def mark_consumed(self, address):
        self.consume_calls.append(address)
        if self.consume_error is not None:
            raise self.consume_error
        super().mark_consumed(address)


@pytest.fixture
def program_id() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def owner() -> Keypair:
    return Keypair()


@pytest.fixture
def gateway() -> FakeLedgerGateway:
    return FakeLedgerGateway()


@pytest.fixture
def context(gateway, owner, program_id) -> LedgerContext:
    return LedgerContext(gateway, owner, program_id)


@pytest.fixture
def merchant() -> Pubkey:
    return Keypair().pubkey()


@pytest.fixture
def user() -> Pubkey:
    return Keypair().pubkey()


@pytest.fixture
def reward_mint() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def inventory(reward_mint) -> CountingInventory:
    return CountingInventory([RewardItem(id=1, address=str(reward_mint), reward_type=RewardType.VERIFIED)])


def put_merchant(gateway: FakeLedgerGateway, merchant: Pubkey, program_id: Pubkey, **fields) -> Pubkey:
    pda = addresses.merchant_address(merchant, program_id)
    gateway.accounts[str(pda)] = encode_merchant_account(MerchantAccount(**fields))
    return pda


def fund_owner(gateway: FakeLedgerGateway, owner: Keypair, mint: Pubkey, amount: int = 1) -> Pubkey:
    ata = get_associated_token_address(owner.pubkey(), mint)
    gateway.token_balances[str(ata)] = amount
    gateway.accounts[str(ata)] = b"\x00" * 165
    return ata


def fresh_ref(gateway: FakeLedgerGateway, age: int = 60) -> str:
    ref = str(Keypair().sign_message(f"ref-{len(gateway.transactions)}".encode()))
    gateway.add_transaction(ref, NOW - age)
    return ref
