# yieldrelay/routing.py
import asyncio
import aiohttp
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .chains import ChainRegistry
from .errors import NoRouteFound, RouteExecutionError, RouteServiceError, TransientStatusError
from .models import Route, RouteStep, StatusType, TransferStatus

# executionDuration is optional per step; unknown steps count as one minute
DEFAULT_STEP_DURATION_SEC = 60


def normalize_status(raw: Optional[str]) -> StatusType:
    """Case-insensitive mapping of the service's status string. Unknown values mean IN_PROGRESS."""
    value = (raw or "").strip().upper()
    if value == "DONE":
        return StatusType.DONE
    if value == "FAILED":
        return StatusType.FAILED
    if value == "PENDING":
        return StatusType.PENDING
    return StatusType.IN_PROGRESS


@dataclass(slots=True)
class RouteRequest:
    from_chain_id: int
    to_chain_id: int
    from_token: str
    to_token: str
    from_amount: str
    from_address: str
    to_address: str
    slippage: float
    order: str = "RECOMMENDED"
    allowed_bridges: List[str] = field(default_factory=list)
    integrator: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"slippage": self.slippage, "order": self.order}
        if self.allowed_bridges:
            options["bridges"] = {"allow": list(self.allowed_bridges)}
        if self.integrator:
            options["integrator"] = self.integrator
        return {
            "fromChainId": self.from_chain_id,
            "toChainId": self.to_chain_id,
            "fromTokenAddress": self.from_token,
            "toTokenAddress": self.to_token,
            "fromAmount": self.from_amount,
            "fromAddress": self.from_address,
            "toAddress": self.to_address,
            "options": options,
        }


def parse_route(raw: Dict[str, Any], request: RouteRequest) -> Route:
    """Converts one routing-service route into the internal Route model."""
    steps = []
    total_time = 0
    for step in raw.get("steps", []):
        action = step.get("action", {})
        estimate = step.get("estimate", {})
        duration = estimate.get("executionDuration")
        total_time += int(duration) if duration is not None else DEFAULT_STEP_DURATION_SEC
        steps.append(RouteStep(
            type=step.get("type", "cross"),
            tool=step.get("tool", "unknown"),
            from_chain=int(action.get("fromChainId", request.from_chain_id)),
            to_chain=int(action.get("toChainId", request.to_chain_id)),
            from_token=(action.get("fromToken") or {}).get("address", ""),
            to_token=(action.get("toToken") or {}).get("address", ""),
            from_amount=str(action.get("fromAmount", "0")),
            to_amount=str(estimate.get("toAmount", "0")),
        ))

    return Route(
        id=str(raw["id"]),
        from_chain=request.from_chain_id,
        to_chain=request.to_chain_id,
        from_token=request.from_token,
        to_token=request.to_token,
        from_amount=str(raw.get("fromAmount", request.from_amount)),
        to_amount=str(raw.get("toAmount", "0")),
        to_amount_min=str(raw.get("toAmountMin", "0")),
        estimated_gas=str(raw.get("gasCostUSD") or "0"),
        estimated_time_sec=total_time,
        bridge_name=steps[0].tool if steps else "unknown",
        steps=steps,
        raw=raw,
    )


def parse_status(payload: Dict[str, Any]) -> TransferStatus:
    sending = payload.get("sending") or {}
    receiving = payload.get("receiving") or {}
    return TransferStatus(
        status=normalize_status(payload.get("status")),
        substatus=payload.get("substatus"),
        tx_hash=sending.get("txHash"),
        receiving_tx_hash=receiving.get("txHash"),
        from_amount=sending.get("amount"),
        to_amount=receiving.get("amount"),
        error=payload.get("substatusMessage") or payload.get("message"),
    )


class LiFiClient:
    """
    Thin async wrapper over the routing/status REST API.
    One instance per process; pass it to whoever needs it. Every transport
    failure is re-raised as the error class its caller expects.
    """
    def __init__(self, config: dict, logger: logging.Logger, session: Optional[aiohttp.ClientSession] = None):
        cfg = config['routing']
        self.base_url = cfg['api_url'].rstrip('/')
        self.api_key = cfg.get('api_key')
        self.timeout = aiohttp.ClientTimeout(total=cfg.get('request_timeout_seconds', 30))
        self.logger = logger
        self._session = session
        self._owns_session = session is None

    def _headers(self) -> Dict[str, str]:
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["x-lifi-api-key"] = self.api_key
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        session = self._get_session()
        async with session.request(method, f"{self.base_url}{path}", headers=self._headers(), **kwargs) as resp:
            if resp.status >= 400:
                body = await resp.text()
                raise aiohttp.ClientResponseError(
                    resp.request_info, resp.history, status=resp.status, message=body[:200]
                )
            return await resp.json()

    async def get_routes(self, request: RouteRequest) -> List[Dict[str, Any]]:
        try:
            data = await self._request("POST", "/advanced/routes", json=request.to_payload())
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RouteServiceError(f"Failed to get routes: {e}") from e
        return data.get("routes") or []

    async def get_status(self, tx_hash: str, from_chain: int, to_chain: int,
                         bridge: Optional[str] = None) -> TransferStatus:
        params = {"txHash": tx_hash, "fromChain": str(from_chain), "toChain": str(to_chain)}
        if bridge:
            params["bridge"] = bridge
        try:
            data = await self._request("GET", "/status", params=params)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientStatusError(f"Status check failed for {tx_hash}: {e}") from e
        return parse_status(data)

    async def get_step_transaction(self, step: Dict[str, Any]) -> Dict[str, Any]:
        """Returns the step with its `transactionRequest` populated."""
        try:
            return await self._request("POST", "/advanced/stepTransaction", json=step)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RouteExecutionError(f"Failed to populate step {step.get('id')}: {e}") from e

    async def shutdown(self):
        if self._owns_session and self._session is not None:
            await self._session.close()


class RouteSelector:
    """
    Turns (chains, amount, user) into a concrete Route.
    The service's own ordering is trusted: the first route returned is the one used.
    """
    def __init__(self, client: LiFiClient, registry: ChainRegistry, config: dict, logger: logging.Logger):
        self.client = client
        self.registry = registry
        self.cfg = config['routing']
        self.logger = logger

    def build_request(self, from_chain: int, to_chain: int, amount: int, user_address: str,
                      slippage: Optional[float] = None) -> RouteRequest:
        return RouteRequest(
            from_chain_id=from_chain,
            to_chain_id=to_chain,
            from_token=self.registry.stable_asset(from_chain),
            to_token=self.registry.stable_asset(to_chain),
            from_amount=str(amount),
            from_address=user_address,
            to_address=user_address,
            slippage=slippage if slippage is not None else self.cfg.get('default_slippage', 0.005),
            order=self.cfg.get('order', 'RECOMMENDED'),
            allowed_bridges=list(self.cfg.get('allowed_bridges') or []),
            integrator=self.cfg.get('integrator'),
        )

    async def get_best_route(self, from_chain: int, to_chain: int, amount: int, user_address: str,
                             slippage: Optional[float] = None) -> Route:
        request = self.build_request(from_chain, to_chain, amount, user_address, slippage)
        self.logger.info(
            f"🔎 QUOTING: {self.registry.name(from_chain)} -> {self.registry.name(to_chain)} | Amount: {amount}"
        )

        raw_routes = await self.client.get_routes(request)
        if not raw_routes:
            raise NoRouteFound(
                f"No routes from {self.registry.name(from_chain)} to {self.registry.name(to_chain)} for {amount}"
            )

        try:
            route = parse_route(raw_routes[0], request)
        except (KeyError, TypeError, ValueError) as e:
            raise RouteServiceError(f"Malformed route in service response: {e}") from e
        self.logger.info(
            f"   Route {route.id} via {route.bridge_name} | Min out: {route.to_amount_min} | "
            f"Gas: ${route.estimated_gas} | ETA: {route.estimated_time_sec}s"
        )
        return route

    async def get_quotes(self, request: RouteRequest, limit: Optional[int] = None) -> List[Route]:
        """
        Best-effort comparison list. Any failure yields an empty list instead of an error.
        """
        limit = limit if limit is not None else self.cfg.get('quote_limit', 3)
        try:
            raw_routes = await self.client.get_routes(request)
            return [parse_route(r, request) for r in raw_routes[:limit]]
        except Exception as e:
            self.logger.warning(f"Quote comparison unavailable: {e}")
            return []


def summarize_routes(routes: Sequence[Route]) -> List[Dict[str, Any]]:
    """Flat rows for display, cheapest gas first."""
    return [
        {
            "id": r.id,
            "bridge": r.bridge_name,
            "to_amount_min": r.to_amount_min,
            "gas_usd": r.gas_cost_usd,
            "eta_sec": r.estimated_time_sec,
            "steps": len(r.steps),
        }
        for r in sorted(routes, key=lambda r: r.gas_cost_usd)
    ]
