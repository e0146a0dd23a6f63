"""
Unit Tests for reward issuance

Tests cover:
1. Input checks
2. Eligibility gating
3. Behaviour at each failure point
4. Soft failure when consumption cannot be recorded
5. Run log bookkeeping
"""

import pytest
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from conftest import fund_owner, put_merchant
from loyalty import addresses
from loyalty.errors import (
    InvalidArgument,
    LedgerUnavailable,
    NoInventory,
    NotEligible,
    RejectedByProgram,
    SourceAccountEmpty,
    StoreUnavailable,
)
from loyalty.issuance import RewardIssuanceService
from loyalty.models import IssuanceStep, RewardItem, RewardType, RunStatus
from loyalty.program import build_update_nft_status_ix
from loyalty.runlog import InMemoryRunLog


@pytest.fixture
def runs():
    return InMemoryRunLog()


@pytest.fixture
def service(context, inventory, runs):
    return RewardIssuanceService(context, inventory, runs)


@pytest.fixture
def eligible(gateway, merchant, program_id, owner, reward_mint):
    put_merchant(gateway, merchant, program_id, verified_badge=True)
    fund_owner(gateway, owner, reward_mint)
    return merchant


def only_run(runs):
    [run] = runs.runs.values()
    return run


class TestIssueArguments:
    """Tests for argument validation."""

    def test_missing_merchant(self, service, gateway, inventory):
        with pytest.raises(InvalidArgument):
            service.issue("", "verified")
        assert inventory.reserve_calls == 0

    def test_invalid_reward_type(self, service, merchant, inventory, runs):
        """Test that only verified and og are accepted."""
        with pytest.raises(InvalidArgument):
            service.issue(str(merchant), "gold")
        assert inventory.reserve_calls == 0
        assert runs.runs == {}


class TestEligibility:
    """Tests for the badge checks."""

    def test_verified_without_badge(self, service, gateway, merchant, program_id, inventory, runs):
        """Test that a merchant without the badge is refused with no side effects."""
        put_merchant(gateway, merchant, program_id, verified_badge=False)

        with pytest.raises(NotEligible):
            service.issue(str(merchant), "verified")

        assert inventory.reserve_calls == 0
        assert gateway.submitted == []
        assert inventory.consume_calls == []
        assert only_run(runs).furthest_step == IssuanceStep.MERCHANT_LOADED

    def test_verified_already_minted(self, service, gateway, merchant, program_id, inventory, reward_mint):
        """Scenario B: the verified NFT was already issued."""
        put_merchant(gateway, merchant, program_id, verified_badge=True, verified_nft_minted=True)

        with pytest.raises(NotEligible, match="already minted"):
            service.issue(str(merchant), "verified")

        assert inventory.reserve_calls == 0
        assert gateway.submitted == []
        assert inventory.consume_calls == []
        assert inventory.get(str(reward_mint)).is_available()

    def test_og_requires_og_badge(self, service, gateway, merchant, program_id, inventory):
        """Test that the verified badge does not qualify for the OG reward."""
        put_merchant(gateway, merchant, program_id, verified_badge=True)

        with pytest.raises(NotEligible, match="OG badge"):
            service.issue(str(merchant), "og")

        assert inventory.reserve_calls == 0

    def test_unregistered_merchant(self, service, gateway, merchant, inventory):
        """Test that a merchant with no on-chain account is not eligible."""
        with pytest.raises(NotEligible):
            service.issue(str(merchant), "verified")

        assert inventory.reserve_calls == 0


class TestIssueFlow:
    """Tests for the full issuance path."""

    def test_scenario_a_success(self, service, gateway, eligible, inventory, reward_mint, runs):
        """Scenario A: eligible merchant, one verified item, all calls succeed."""
        receipt = service.issue(str(eligible), "verified")

        assert receipt.reward_address == str(reward_mint)
        assert receipt.transfer_signature == "sig-1"
        assert receipt.on_chain_tx == "sig-2"
        assert receipt.consumption_recorded is True
        assert inventory.consume_calls == [str(reward_mint)]
        assert inventory.get(str(reward_mint)).reserved is True

        run = runs.get(receipt.run_id)
        assert run.status == RunStatus.COMPLETED
        assert run.furthest_step == IssuanceStep.CONSUMPTION_RECORDED

    def test_transfer_creates_merchant_token_account(self, service, gateway, eligible, owner, reward_mint):
        """Test that a missing merchant holding is created before the transfer."""
        service.issue(str(eligible), "verified")

        transfer_ixs = gateway.submitted[0]
        assert len(transfer_ixs) == 2
        dest = get_associated_token_address(eligible, reward_mint)
        source = get_associated_token_address(owner.pubkey(), reward_mint)
        transfer_ix = transfer_ixs[1]
        assert transfer_ix.accounts[0].pubkey == source
        assert transfer_ix.accounts[1].pubkey == dest
        assert bytes(transfer_ix.data) == bytes([3]) + (1).to_bytes(8, "little")

    def test_existing_merchant_token_account_reused(self, service, gateway, eligible, reward_mint):
        """Test that only the transfer is sent when the holding exists."""
        dest = get_associated_token_address(eligible, reward_mint)
        gateway.accounts[str(dest)] = b"\x00" * 165

        service.issue(str(eligible), "verified")

        assert len(gateway.submitted[0]) == 1

    def test_status_update_sets_only_requested_flag(self, service, gateway, merchant, program_id, owner, reward_mint, inventory):
        """Test that the OG flag is carried through when issuing verified."""
        put_merchant(gateway, merchant, program_id, verified_badge=True, og_badge=True, og_nft_minted=True)
        fund_owner(gateway, owner, reward_mint)

        service.issue(str(merchant), "verified")

        [status_ix] = gateway.submitted[1]
        expected = build_update_nft_status_ix(
            program_id,
            addresses.merchant_address(merchant, program_id),
            addresses.contract_owner_address(program_id),
            owner.pubkey(),
            True,
            True,
        )
        assert status_ix == expected

    def test_og_issuance(self, service, gateway, merchant, program_id, owner, inventory):
        """Test issuing the OG reward from OG inventory."""
        og_mint = Pubkey.new_unique()
        inventory.add(RewardItem(id=2, address=str(og_mint), reward_type=RewardType.OG))
        put_merchant(gateway, merchant, program_id, og_badge=True)
        fund_owner(gateway, owner, og_mint)

        receipt = service.issue(str(merchant), RewardType.OG)

        assert receipt.reward_address == str(og_mint)
        assert bytes(gateway.submitted[1][0].data)[-2:] == bytes([0, 1])


class TestFailurePoints:
    """Tests for what is left behind at each failure point."""

    def test_no_inventory(self, service, gateway, eligible, inventory, runs):
        """Test that an empty inventory stops before any ledger write."""
        inventory.items.clear()

        with pytest.raises(NoInventory):
            service.issue(str(eligible), "verified")

        assert gateway.submitted == []
        run = only_run(runs)
        assert run.status == RunStatus.FAILED
        assert run.furthest_step == IssuanceStep.ELIGIBILITY_CHECKED
        assert not run.needs_reconciliation()

    def test_source_account_empty(self, service, gateway, merchant, program_id, inventory, reward_mint, runs):
        """Test that an unfunded owner holding fails the transfer step."""
        put_merchant(gateway, merchant, program_id, verified_badge=True)

        with pytest.raises(SourceAccountEmpty):
            service.issue(str(merchant), "verified")

        assert gateway.submitted == []
        item = inventory.get(str(reward_mint))
        assert item.claimed_by == only_run(runs).run_id
        assert item.reserved is False

    def test_transfer_failure_keeps_reservation(self, service, gateway, eligible, inventory, reward_mint, runs):
        """Test that a failed transfer leaves the item held and skips later steps."""
        gateway.submit_failures[1] = LedgerUnavailable("blockhash expired")

        with pytest.raises(LedgerUnavailable):
            service.issue(str(eligible), "verified")

        assert len(gateway.submitted) == 1
        assert inventory.consume_calls == []
        item = inventory.get(str(reward_mint))
        run = only_run(runs)
        assert item.claimed_by == run.run_id
        assert not item.is_available()
        assert run.furthest_step == IssuanceStep.INVENTORY_RESERVED
        assert run.reward_address == str(reward_mint)
        assert runs.incomplete() == [run]

    def test_held_item_not_offered_again(self, service, gateway, eligible, inventory):
        """Test that a held item is excluded from later runs."""
        gateway.submit_failures[1] = LedgerUnavailable("timeout")
        with pytest.raises(LedgerUnavailable):
            service.issue(str(eligible), "verified")

        with pytest.raises(NoInventory):
            service.issue(str(eligible), "verified")

    def test_status_update_failure(self, service, gateway, eligible, inventory, reward_mint, runs):
        """Test that a rejected status update is terminal and consumption is not recorded."""
        gateway.submit_failures[2] = RejectedByProgram("Unauthorized")

        with pytest.raises(RejectedByProgram):
            service.issue(str(eligible), "verified")

        assert inventory.consume_calls == []
        run = only_run(runs)
        assert run.furthest_step == IssuanceStep.ASSET_TRANSFERRED
        assert run.transfer_signature == "sig-1"
        assert run.needs_reconciliation()

    def test_consume_failure_is_soft(self, service, gateway, eligible, inventory, reward_mint, runs):
        """Test that a store outage after the status update still returns a receipt."""
        inventory.consume_error = StoreUnavailable("supabase down")

        receipt = service.issue(str(eligible), "verified")

        assert receipt.reward_address == str(reward_mint)
        assert receipt.consumption_recorded is False
        assert receipt.on_chain_tx == "sig-2"
        run = runs.get(receipt.run_id)
        assert run.status == RunStatus.COMPLETED_WITH_WARNINGS
        assert run.furthest_step == IssuanceStep.STATUS_UPDATED
        assert runs.incomplete() == [run]

    def test_unexpected_consume_error_is_soft(self, service, gateway, eligible, inventory, reward_mint, runs):
        """Test that any error while recording consumption still returns a receipt."""
        inventory.consume_error = ValueError("Expecting value: line 1 column 1 (char 0)")

        receipt = service.issue(str(eligible), "verified")

        assert receipt.consumption_recorded is False
        assert receipt.on_chain_tx == "sig-2"
        run = runs.get(receipt.run_id)
        assert run.status == RunStatus.COMPLETED_WITH_WARNINGS
        assert "Expecting value" in run.error
        assert runs.incomplete() == [run]


class TestRunRetention:
    """Tests for how long runs are kept in memory."""

    def test_refusals_do_not_accumulate(self, context, inventory, gateway, merchant, program_id):
        """Test that settled runs are dropped beyond the recent window."""
        runs = InMemoryRunLog(max_recent=10)
        service = RewardIssuanceService(context, inventory, runs)
        put_merchant(gateway, merchant, program_id)

        for _ in range(50):
            with pytest.raises(NotEligible):
                service.issue(str(merchant), "verified")

        assert len(runs.runs) == 10
        assert runs.incomplete() == []

    def test_runs_needing_reconciliation_are_kept(self, context, inventory, gateway, eligible, merchant, program_id):
        """Test that a partial run survives any number of later refusals."""
        runs = InMemoryRunLog(max_recent=3)
        service = RewardIssuanceService(context, inventory, runs)
        gateway.submit_failures[1] = LedgerUnavailable("timeout")
        with pytest.raises(LedgerUnavailable):
            service.issue(str(eligible), "verified")
        put_merchant(gateway, merchant, program_id)

        for _ in range(20):
            with pytest.raises(NotEligible):
                service.issue(str(merchant), "verified")

        [partial] = runs.incomplete()
        assert partial.furthest_step == IssuanceStep.INVENTORY_RESERVED
        assert len(runs.runs) == 4
