"""
Unit Tests for the ledger program client

Tests cover:
1. Instruction discriminators and arguments
2. Account metas
3. Account decoding
"""

import hashlib

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from loyalty.errors import AccountDecodeError
from loyalty.models import MerchantAccount, UserAccount
from loyalty.program import (
    MERCHANT_DISCRIMINATOR,
    build_increment_tx_count_ix,
    build_update_nft_status_ix,
    decode_merchant_account,
    decode_user_account,
    encode_merchant_account,
    encode_user_account,
    sighash,
)


class TestInstructions:
    """Tests for instruction encoding."""

    def test_sighash_is_anchor_global_namespace(self):
        """Test the 8-byte instruction discriminator."""
        assert sighash("increment_tx_count") == hashlib.sha256(b"global:increment_tx_count").digest()[:8]

    def test_increment_tx_count_accounts(self, program_id):
        """Test account order and signer flags for the counter increment."""
        merchant, user, owner_pda = Pubkey.new_unique(), Pubkey.new_unique(), Pubkey.new_unique()
        signer = Keypair().pubkey()

        ix = build_increment_tx_count_ix(program_id, merchant, user, owner_pda, signer)

        assert ix.program_id == program_id
        assert bytes(ix.data) == sighash("increment_tx_count")
        assert [meta.pubkey for meta in ix.accounts] == [merchant, user, owner_pda, signer]
        assert [meta.is_signer for meta in ix.accounts] == [False, False, False, True]
        assert ix.accounts[0].is_writable and ix.accounts[1].is_writable

    def test_update_nft_status_arguments(self, program_id):
        """Test that both flags are encoded as Borsh bools in order."""
        ix = build_update_nft_status_ix(
            program_id, Pubkey.new_unique(), Pubkey.new_unique(), Keypair().pubkey(), True, False
        )

        assert bytes(ix.data) == sighash("update_merchant_nft_status") + bytes([1, 0])
        assert len(ix.accounts) == 3
        assert ix.accounts[2].is_signer


class TestAccountDecoding:
    """Tests for on-chain account decoding."""

    def test_decode_merchant_account(self):
        """Test decoding a merchant account written by the program."""
        account = MerchantAccount(verified_badge=True, og_nft_minted=True, points=250, tx_count=12)

        decoded = decode_merchant_account(encode_merchant_account(account))

        assert decoded == account

    def test_decode_user_account(self):
        """Test decoding a user account."""
        data = encode_user_account(UserAccount(points=10, tx_count=3))

        assert decode_user_account(data) == UserAccount(points=10, tx_count=3)

    def test_wrong_discriminator_rejected(self):
        """Test that a user account is not mistaken for a merchant account."""
        data = encode_user_account(UserAccount(points=1, tx_count=1))

        with pytest.raises(AccountDecodeError):
            decode_merchant_account(data)

    def test_truncated_account_rejected(self):
        """Test that short account data fails to decode."""
        with pytest.raises(AccountDecodeError):
            decode_merchant_account(MERCHANT_DISCRIMINATOR + b"\x01")
