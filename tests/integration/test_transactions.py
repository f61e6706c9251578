"""Integration tests for write actions over a mocked ledger."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from web3.exceptions import ContractLogicError

from hedge_monitor.errors import ConfirmationTimeout, UserCancelled
from hedge_monitor.lifecycle import LifecycleState
from hedge_monitor.models import Receipt
from hedge_monitor.oracles.resync import RESYNC_WARNING, ResyncResult
from hedge_monitor.services.position_service import PositionService
from hedge_monitor.services.scheduler import InFlightGuard
from hedge_monitor.services.transactions import TransactionManager, TxStatus


@pytest.fixture()
def table(read_table, sample_position) -> dict:
    return read_table(sample_position)


@pytest.fixture()
def ledger(make_ledger, table):
    return make_ledger(table)


@pytest.fixture()
def manager(ledger, sample_contracts, sample_position, fast_tx_config) -> TransactionManager:
    reads = PositionService(ledger, sample_contracts)
    return TransactionManager(ledger, reads, sample_position.owner, fast_tx_config)


def _zero_debt(table: dict) -> None:
    details = list(table[("position", "getPositionDetails")])
    details[2] = 0
    table[("position", "getPositionDetails")] = tuple(details)
    table[("position", "getDebtDetails")] = (0, 0, 0)


class TestApprove:
    @pytest.mark.asyncio
    async def test_default_amount_to_router(self, manager, ledger, sample_contracts) -> None:
        result = await manager.approve()
        assert result.status is TxStatus.CONFIRMED
        contract, method, args = ledger.write.call_args[0]
        assert (contract.kind, contract.address) == ("erc20", sample_contracts.stablecoin)
        assert method == "approve"
        assert args == [sample_contracts.router, 1_000_000 * 10**6]

    @pytest.mark.asyncio
    async def test_signer_rejection_is_cancelled(self, manager, ledger) -> None:
        ledger.write.side_effect = UserCancelled("User rejected the request")
        result = await manager.approve("100")
        assert result.status is TxStatus.CANCELLED
        assert result.tx_hash is None

    @pytest.mark.asyncio
    async def test_invalid_amount_blocked(self, manager, ledger) -> None:
        result = await manager.approve("0")
        assert result.status is TxStatus.BLOCKED
        ledger.write.assert_not_called()


class TestActivate:
    @pytest.mark.asyncio
    async def test_activates_after_resync(self, ledger, table, sample_contracts, sample_position, fast_tx_config) -> None:
        table[("router", "hasPosition")] = False
        resync = AsyncMock()
        resync.ensure_fresh.return_value = ResyncResult(attempted=True, converged=True)
        reads = PositionService(ledger, sample_contracts)
        manager = TransactionManager(
            ledger, reads, sample_position.owner, fast_tx_config, resync=resync
        )

        result = await manager.activate("1000", "brl", "high")

        assert result.status is TxStatus.CONFIRMED
        resync.ensure_fresh.assert_awaited_once_with("BRL")
        contract, method, args = ledger.write.call_args[0]
        assert method == "activateProtection"
        assert args == [1_000_000_000, "BRL", 2]

    @pytest.mark.asyncio
    async def test_resync_failure_only_warns(self, ledger, table, sample_contracts, sample_position, fast_tx_config) -> None:
        table[("router", "hasPosition")] = False
        resync = AsyncMock()
        resync.ensure_fresh.return_value = ResyncResult(
            attempted=True, converged=False, warning=RESYNC_WARNING
        )
        manager = TransactionManager(
            ledger, PositionService(ledger, sample_contracts), sample_position.owner,
            fast_tx_config, resync=resync,
        )

        result = await manager.activate("1000", "BRL", "low")

        assert result.status is TxStatus.CONFIRMED
        assert result.warnings == (RESYNC_WARNING,)

    @pytest.mark.asyncio
    async def test_low_allowance_guides_to_approve(self, manager, ledger, table) -> None:
        table[("router", "hasPosition")] = False
        table[("erc20", "allowance")] = 0
        result = await manager.activate("1000", "BRL", "medium")
        assert result.status is TxStatus.BLOCKED
        assert result.next_step == "approve"
        ledger.write.assert_not_called()

    @pytest.mark.asyncio
    async def test_existing_position_blocked(self, manager, ledger) -> None:
        result = await manager.activate("1000", "BRL", "medium")
        assert result.status is TxStatus.BLOCKED
        assert "already has an active position" in result.message

    @pytest.mark.asyncio
    async def test_unsupported_currency(self, manager, table) -> None:
        table[("router", "hasPosition")] = False
        result = await manager.activate("1000", "JPY", "medium")
        assert result.status is TxStatus.BLOCKED
        assert "JPY" in result.message

    @pytest.mark.asyncio
    async def test_revert_is_translated(self, manager, ledger, table) -> None:
        table[("router", "hasPosition")] = False
        ledger.write.side_effect = ContractLogicError(
            "execution reverted: Insufficient liquidity in funding pool"
        )
        result = await manager.activate("1000", "BRL", "medium")
        assert result.status is TxStatus.REJECTED
        assert "liquidity" in result.message


class TestReduce:
    @pytest.mark.asyncio
    async def test_dust_overshoot_repays_exact_debt(self, manager, ledger, sample_position) -> None:
        result = await manager.reduce("3512.500001")
        assert result.status is TxStatus.CONFIRMED
        _, method, args = ledger.write.call_args[0]
        assert method == "reduceProtection"
        assert args == [sample_position.total_debt]
        assert manager.lifecycle.state is LifecycleState.ACTIVE

    @pytest.mark.asyncio
    async def test_fallback_pricing_warns_but_proceeds(self, manager, table) -> None:
        table[("position", "validateOracle")] = False
        table[("position", "getSafeExchangeRate")] = 17_000_000
        result = await manager.reduce("100")
        assert result.status is TxStatus.CONFIRMED
        assert any("stale or invalid" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_overshoot_blocked(self, manager, ledger) -> None:
        result = await manager.reduce("4000")
        assert result.status is TxStatus.BLOCKED
        assert "Cannot repay more than current debt" in result.message
        ledger.write.assert_not_called()

    @pytest.mark.asyncio
    async def test_receipt_timeout_is_unconfirmed(self, manager, ledger) -> None:
        ledger.await_receipt.side_effect = ConfirmationTimeout("0x" + "f" * 64, 1.0)
        result = await manager.reduce("100")
        assert result.status is TxStatus.SUBMITTED_UNCONFIRMED
        assert result.tx_hash == "0x" + "f" * 64
        assert "not confirmed" in result.message

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, manager, ledger) -> None:
        ledger.await_receipt.return_value = Receipt("0xdead", 5, False)
        result = await manager.reduce("100")
        assert result.status is TxStatus.REJECTED

    @pytest.mark.asyncio
    async def test_duplicate_submission_blocked(
        self, ledger, sample_contracts, sample_position, fast_tx_config
    ) -> None:
        guard = InFlightGuard()
        manager = TransactionManager(
            ledger, PositionService(ledger, sample_contracts), sample_position.owner,
            fast_tx_config, guard=guard,
        )
        with guard.hold(sample_position.address, "reduce"):
            result = await manager.reduce("100")
        assert result.status is TxStatus.BLOCKED
        ledger.write.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_position(self, manager, table) -> None:
        table[("router", "hasPosition")] = False
        result = await manager.reduce("100")
        assert result.status is TxStatus.BLOCKED
        assert "No active position" in result.message


class TestCloseAndSettle:
    @pytest.mark.asyncio
    async def test_close_with_debt_guides_to_reduce(self, manager, ledger) -> None:
        result = await manager.close()
        assert result.status is TxStatus.BLOCKED
        assert result.next_step == "reduce"
        ledger.write.assert_not_called()

    @pytest.mark.asyncio
    async def test_close_zero_debt(self, manager, ledger, table, sample_position) -> None:
        _zero_debt(table)
        result = await manager.close()
        assert result.status is TxStatus.CONFIRMED
        assert ledger.write.call_args[0][1] == "closeProtection"
        assert manager.lifecycle.state is LifecycleState.CLOSED

        # The lagging node still reports the closed position; it stays hidden.
        assert manager.lifecycle.observe(
            await manager._reads.fetch_position(sample_position.owner)
        ) is None

    @pytest.mark.asyncio
    async def test_close_forfeit_requires_acknowledgement(self, manager, ledger, table) -> None:
        _zero_debt(table)
        table[("router", "calculateProtectionOutcome")] = (35_000_000, 1_000)
        result = await manager.close()
        assert result.status is TxStatus.BLOCKED
        assert result.next_step == "settle"

        result = await manager.close(acknowledge_forfeit=True)
        assert result.status is TxStatus.CONFIRMED
        assert any("Forfeited" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_settle(self, manager, ledger, table) -> None:
        _zero_debt(table)
        result = await manager.settle()
        assert result.status is TxStatus.CONFIRMED
        assert ledger.write.call_args[0][1] == "settleProtection"

    @pytest.mark.asyncio
    async def test_failed_close_restores_active(self, manager, ledger, table) -> None:
        _zero_debt(table)
        ledger.write.side_effect = RuntimeError("All RPC endpoints failed")
        result = await manager.close()
        assert result.status is TxStatus.FAILED
        assert manager.lifecycle.state is LifecycleState.ACTIVE


class TestLpDeposit:
    @pytest.mark.asyncio
    async def test_deposit(self, manager, ledger, sample_contracts) -> None:
        result = await manager.lp_deposit("250")
        assert result.status is TxStatus.CONFIRMED
        contract, method, args = ledger.write.call_args[0]
        assert (contract.kind, contract.address) == ("funding_pool", sample_contracts.funding_pool)
        assert args == [250_000_000]

    @pytest.mark.asyncio
    async def test_below_minimum(self, manager, ledger) -> None:
        result = await manager.lp_deposit("50")
        assert result.status is TxStatus.BLOCKED
        assert "Minimum deposit" in result.message

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, manager, table) -> None:
        table[("erc20", "balanceOf")] = 10_000_000
        result = await manager.lp_deposit("250")
        assert result.status is TxStatus.BLOCKED
        assert "Insufficient balance" in result.message
