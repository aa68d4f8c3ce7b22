# yieldrelay/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
import re
import time

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


class RiskProfile(Enum):
    """
    Risk tier a user has opted into.
    Aliases from the profile records (conservative/balanced/aggressive) map onto the same tiers.
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["RiskProfile"]:
        if not value:
            return None
        key = value.strip().lower()
        aliases = {"conservative": "low", "balanced": "medium", "aggressive": "high"}
        key = aliases.get(key, key)
        for member in cls:
            if member.value == key:
                return member
        return None


class StatusType(Enum):
    """Server-reported lifecycle of a cross-chain transfer."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    FAILED = "FAILED"


class MonitorState(Enum):
    """
    States of the bridge monitor state machine.
    SUBMITTED -> POLLING -> (DONE | FAILED | TIMED_OUT)
    """
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    DONE = "DONE"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        return self in (MonitorState.DONE, MonitorState.FAILED, MonitorState.TIMED_OUT)


class WorkflowStatus(Enum):
    SKIPPED = "SKIPPED"
    NO_ROUTE = "NO_ROUTE"
    DRY_RUN = "DRY_RUN"
    COMPLETED = "COMPLETED"


@dataclass(slots=True, frozen=True)
class UserProfile:
    """
    Immutable snapshot of the user's constraints for one decision cycle.
    max_slippage and min_apy_threshold are in percent, max_chain_exposure is a fraction.
    """
    risk_profile: Optional[RiskProfile] = None
    max_slippage: float = 0.5
    min_apy_threshold: float = 5.0
    excluded_protocols: FrozenSet[str] = frozenset()
    max_chain_exposure: float = 0.5

    @classmethod
    def from_records(cls, records: Dict[str, Any]) -> "UserProfile":
        """Builds a profile from name-service style text records (all values are strings or missing)."""
        def _float(key: str, default: float) -> float:
            raw = records.get(key)
            if raw is None or raw == "":
                return default
            return float(raw)

        excluded = records.get("excluded_protocols") or ""
        if isinstance(excluded, str):
            excluded = excluded.split(",")

        return cls(
            risk_profile=RiskProfile.parse(records.get("risk_profile")),
            max_slippage=_float("max_slippage", 0.5),
            min_apy_threshold=_float("min_apy_threshold", 5.0),
            excluded_protocols=frozenset(p.strip().lower() for p in excluded if p and p.strip()),
            max_chain_exposure=_float("max_chain_exposure", 0.5),
        )

    @property
    def slippage_fraction(self) -> float:
        return self.max_slippage / 100


@dataclass(slots=True, frozen=True)
class PortfolioPosition:
    chain: int
    protocol: str
    amount_usd: float
    apy: float


@dataclass(slots=True, frozen=True)
class YieldPool:
    """Externally discovered pool. Read-only to the core."""
    chain_id: int
    protocol: str
    pool_address: Optional[str] = None
    project: Optional[str] = None
    symbol: Optional[str] = None

    @property
    def has_contract_address(self) -> bool:
        return bool(self.pool_address) and bool(ADDRESS_RE.match(self.pool_address))


@dataclass(slots=True, frozen=True)
class YieldOpportunity:
    """Candidate destination. risk_score runs from 1 (safest) to 10."""
    protocol: str
    chain: int
    apy: float
    tvl: float
    risk_score: int
    pool_address: Optional[str] = None

    def to_pool(self) -> YieldPool:
        return YieldPool(chain_id=self.chain, protocol=self.protocol, pool_address=self.pool_address)


@dataclass(slots=True, frozen=True)
class RebalanceDecision:
    """
    Output of the decision engine, consumed immediately by the execution path.
    When should_rebalance is False the chain and amount fields are zero.
    """
    should_rebalance: bool
    reason: str
    from_chain: int = 0
    to_chain: int = 0
    amount_usd: float = 0.0
    expected_apy_gain_pct: float = 0.0
    opportunity: Optional[YieldOpportunity] = None

    @classmethod
    def hold(cls, reason: str) -> "RebalanceDecision":
        return cls(should_rebalance=False, reason=reason)

    @property
    def is_cross_chain(self) -> bool:
        return self.should_rebalance and self.from_chain != self.to_chain


@dataclass(slots=True, frozen=True)
class RouteStep:
    type: str  # swap | bridge | cross
    tool: str
    from_chain: int
    to_chain: int
    from_token: str
    to_token: str
    from_amount: str
    to_amount: str


@dataclass(slots=True, frozen=True)
class Route:
    """
    Normalized, priced plan for moving an amount between chains.
    Amounts are integer strings in the token's minimal unit. `raw` keeps the
    routing service payload needed to populate step transactions.
    """
    id: str
    from_chain: int
    to_chain: int
    from_token: str
    to_token: str
    from_amount: str
    to_amount: str
    to_amount_min: str
    estimated_gas: str
    estimated_time_sec: int
    bridge_name: str
    steps: List[RouteStep] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def gas_cost_usd(self) -> float:
        try:
            return float(self.estimated_gas)
        except (TypeError, ValueError):
            return 0.0


@dataclass(slots=True)
class TransferStatus:
    status: StatusType
    substatus: Optional[str] = None
    tx_hash: Optional[str] = None
    receiving_tx_hash: Optional[str] = None
    from_amount: Optional[str] = None
    to_amount: Optional[str] = None
    error: Optional[str] = None


@dataclass(slots=True, frozen=True)
class TransferHandle:
    """Identifies a submitted route so its status can be polled."""
    route_id: str
    tx_hash: str
    from_chain: int
    to_chain: int
    bridge: Optional[str] = None
    submitted_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class MonitorResult:
    success: bool
    state: MonitorState
    final_status: Optional[TransferStatus]
    attempts: int
    elapsed_seconds: float
    transitions: List[MonitorState] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class TxReceipt:
    tx_hash: str
    status: Optional[int]


@dataclass(slots=True, frozen=True)
class DepositResult:
    tx_hash: str
    amount_deposited: int
    receipt_status: Optional[int]


@dataclass(slots=True, frozen=True)
class DepositOutcome:
    adapter_name: str
    tx_hash: str


@dataclass(slots=True, frozen=True)
class Depositability:
    ok: bool
    adapter: Optional[str] = None
    reason: Optional[str] = None


@dataclass(slots=True)
class WorkflowOutcome:
    status: WorkflowStatus
    decision: RebalanceDecision
    reason: str
    route: Optional[Route] = None
    transfer: Optional[TransferHandle] = None
    monitor: Optional[MonitorResult] = None
    deposit: Optional[DepositOutcome] = None
