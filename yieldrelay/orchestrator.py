# yieldrelay/orchestrator.py
import time
import uuid
import logging
from typing import Optional, Sequence, Set, Tuple

from .bridge_monitor import BridgeExecutionMonitor
from .chain_engine import ChainEngine
from .chains import ChainRegistry, from_minimal_units, to_minimal_units
from .decision_engine import RebalanceDecisionEngine
from .errors import BridgeFailed, BridgeTimeout, NoRouteFound, YieldRelayError
from .execution import YieldExecutionEngine
from .logger import AsyncAuditLogger
from .models import (
    MonitorResult,
    PortfolioPosition,
    RebalanceDecision,
    Route,
    UserProfile,
    WorkflowOutcome,
    WorkflowStatus,
    YieldOpportunity,
)
from .route_executor import RouteExecutor
from .routing import RouteSelector


class RebalanceOrchestrator:
    """
    Drives one rebalance from decision to deposit:
    decide -> economics guard -> quote -> submit -> monitor -> deposit.

    Business outcomes (hold, no route, fees too high) come back as a
    WorkflowOutcome. Infrastructure failures are audited and then raised
    to the caller.
    """
    def __init__(self, config: dict, decision_engine: RebalanceDecisionEngine, selector: RouteSelector,
                 executor: RouteExecutor, monitor: BridgeExecutionMonitor, yield_engine: YieldExecutionEngine,
                 chain_engine: ChainEngine, registry: ChainRegistry, logger: logging.Logger,
                 audit_logger: Optional[AsyncAuditLogger] = None):
        self.config = config
        self.decision_engine = decision_engine
        self.selector = selector
        self.executor = executor
        self.monitor = monitor
        self.yield_engine = yield_engine
        self.chain_engine = chain_engine
        self.registry = registry
        self.logger = logger
        self.audit_logger = audit_logger

        cfg = config['decision']
        self.dry_run = config['system'].get('dry_run', False)
        self.min_rebalance_usd = float(cfg.get('min_rebalance_usd', 100.0))
        self.max_bridge_fee_pct = float(cfg.get('max_bridge_fee_pct', 1.0))
        self.max_wait_seconds = float(config['monitor'].get('max_wait_seconds', 300))

        # One in-flight workflow per (user, source chain) inside this process
        self.active_workflows: Set[Tuple[str, int]] = set()

    async def _audit(self, workflow_id: str, stage: str, decision: RebalanceDecision,
                     tx_hash: str = "", detail: str = ""):
        if self.audit_logger is None:
            return
        await self.audit_logger.log_event([
            time.strftime('%Y-%m-%d %H:%M:%S'),
            workflow_id,
            stage,
            decision.from_chain,
            decision.to_chain,
            f"{decision.amount_usd:.2f}",
            tx_hash,
            detail,
        ])

    def fee_too_high(self, route: Route, amount_usd: float) -> bool:
        if amount_usd <= 0:
            return True
        return (route.gas_cost_usd / amount_usd) * 100 > self.max_bridge_fee_pct

    async def run_cycle(self, profile: UserProfile, positions: Sequence[PortfolioPosition],
                        opportunities: Sequence[YieldOpportunity], user_address: str) -> WorkflowOutcome:
        decision = self.decision_engine.decide(profile, positions, opportunities)
        if not decision.should_rebalance:
            self.logger.info(f"⏸️  HOLD: {decision.reason}")
            return WorkflowOutcome(WorkflowStatus.SKIPPED, decision, decision.reason)

        key = (user_address.lower(), decision.from_chain)
        if key in self.active_workflows:
            reason = f"workflow already in flight for {user_address} on chain {decision.from_chain}"
            self.logger.warning(f"⏸️  SKIPPED: {reason}")
            return WorkflowOutcome(WorkflowStatus.SKIPPED, decision, reason)

        self.active_workflows.add(key)
        try:
            return await self._execute(decision, profile, user_address)
        finally:
            self.active_workflows.discard(key)

    async def _execute(self, decision: RebalanceDecision, profile: UserProfile,
                       user_address: str) -> WorkflowOutcome:
        workflow_id = uuid.uuid4().hex[:12]
        self.logger.info(f"✨ DECIDED [{workflow_id}]: {decision.reason}")
        await self._audit(workflow_id, "DECIDED", decision, detail=decision.reason)

        if decision.amount_usd < self.min_rebalance_usd:
            reason = f"amount ${decision.amount_usd:,.2f} below minimum ${self.min_rebalance_usd:,.2f}"
            self.logger.info(f"⏸️  SKIPPED: {reason}")
            return WorkflowOutcome(WorkflowStatus.SKIPPED, decision, reason)

        arrived_usd = decision.amount_usd
        route = transfer = monitor_result = None

        if decision.is_cross_chain:
            try:
                route = await self.selector.get_best_route(
                    decision.from_chain, decision.to_chain, to_minimal_units(decision.amount_usd),
                    user_address, profile.slippage_fraction,
                )
            except NoRouteFound as e:
                self.logger.warning(f"🚫 NO ROUTE: {e}")
                return WorkflowOutcome(WorkflowStatus.NO_ROUTE, decision, str(e))

            await self._audit(workflow_id, "QUOTED", decision, detail=f"{route.id} via {route.bridge_name}")

            if self.fee_too_high(route, decision.amount_usd):
                reason = (f"bridge cost ${route.gas_cost_usd:.2f} exceeds "
                          f"{self.max_bridge_fee_pct:.2f}% of ${decision.amount_usd:,.2f}")
                self.logger.info(f"⏸️  SKIPPED: {reason}")
                return WorkflowOutcome(WorkflowStatus.SKIPPED, decision, reason, route=route)

        if self.dry_run:
            reason = "dry run: no funds moved"
            self.logger.info(f"🔵 DRY RUN: {decision.reason}")
            return WorkflowOutcome(WorkflowStatus.DRY_RUN, decision, reason, route=route)

        if route is not None:
            try:
                signer = self.chain_engine.get_signer(decision.from_chain)
                transfer = await self.executor.submit(route, signer)
            except YieldRelayError as e:
                await self._audit(workflow_id, "SUBMIT_FAILED", decision, detail=str(e))
                raise
            await self._audit(workflow_id, "SUBMITTED", decision, tx_hash=transfer.tx_hash)

            try:
                monitor_result = await self.monitor.wait_for_completion(transfer, self.max_wait_seconds)
            except BridgeFailed as e:
                await self._audit(workflow_id, "BRIDGE_FAILED", decision, tx_hash=transfer.tx_hash, detail=str(e))
                raise
            except BridgeTimeout as e:
                await self._audit(workflow_id, "BRIDGE_TIMEOUT", decision, tx_hash=transfer.tx_hash, detail=str(e))
                raise

            arrived_usd = self._arrived_usd(route, monitor_result)
            await self._audit(workflow_id, "BRIDGED", decision,
                              tx_hash=monitor_result.final_status.receiving_tx_hash or transfer.tx_hash,
                              detail=f"arrived ${arrived_usd:,.2f}")

        pool = decision.opportunity.to_pool()
        try:
            deposit = await self.yield_engine.deposit_max(pool, decision.to_chain, arrived_usd)
        except YieldRelayError as e:
            await self._audit(workflow_id, "DEPOSIT_FAILED", decision, detail=str(e))
            raise

        await self._audit(workflow_id, "DEPOSITED", decision, tx_hash=deposit.tx_hash, detail=deposit.adapter_name)
        return WorkflowOutcome(
            WorkflowStatus.COMPLETED, decision, f"deposited ${arrived_usd:,.2f} via {deposit.adapter_name}",
            route=route, transfer=transfer, monitor=monitor_result, deposit=deposit,
        )

    @staticmethod
    def _arrived_usd(route: Route, result: MonitorResult) -> float:
        """Received amount reported by the status service, else the route's guaranteed minimum."""
        status = result.final_status
        raw = status.to_amount if status and status.to_amount else route.to_amount_min
        return from_minimal_units(int(raw))
