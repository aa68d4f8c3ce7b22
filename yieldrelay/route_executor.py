# yieldrelay/route_executor.py
import logging

from .chain_engine import ensure_allowance
from .errors import RouteExecutionError
from .models import Route, TransferHandle

NATIVE_TOKENS = {
    "0x0000000000000000000000000000000000000000",
    "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee",
}


class RouteExecutor:
    """
    Submits a selected route from the signer's wallet.
    Each step's calldata is fetched from the routing service, the step's spender
    is approved if needed, and the transaction is sent and confirmed. Nothing is
    retried here.
    """
    def __init__(self, client, logger: logging.Logger):
        self.client = client
        self.logger = logger

    async def submit(self, route: Route, signer) -> TransferHandle:
        steps = route.raw.get("steps") or []
        if not steps:
            raise RouteExecutionError(f"Route {route.id} has no executable steps")

        # Refuse before sending anything if a step would need a different wallet binding
        for step in steps:
            start_chain = int(step.get("action", {}).get("fromChainId", route.from_chain))
            if start_chain != signer.chain_id:
                raise RouteExecutionError(
                    f"Step {step.get('id')} starts on chain {start_chain}, signer is bound to {signer.chain_id}"
                )

        self.logger.info(f"⚡ BRIDGE TRIGGERED: route {route.id} | {len(steps)} step(s) via {route.bridge_name}")

        last_receipt = None
        last_tool = route.bridge_name
        for step in steps:
            try:
                populated = await self.client.get_step_transaction(step)
                tx_request = populated.get("transactionRequest")
                if not tx_request:
                    raise RouteExecutionError(f"Step {step.get('id')} came back without a transaction")

                action = populated.get("action", {})
                approval_address = populated.get("estimate", {}).get("approvalAddress")
                token = (action.get("fromToken") or {}).get("address", "")
                if approval_address and token.lower() not in NATIVE_TOKENS:
                    await ensure_allowance(signer, token, approval_address, int(action.get("fromAmount", 0)), self.logger)

                receipt = await signer.send_transaction(tx_request)
            except RouteExecutionError:
                raise
            except Exception as e:
                raise RouteExecutionError(f"Step {step.get('id')} failed: {e}") from e

            if receipt.status != 1:
                raise RouteExecutionError(f"Step {step.get('id')} reverted (tx {receipt.tx_hash})")
            last_receipt = receipt
            last_tool = step.get("tool", last_tool)

        self.logger.info(f"✅ SUBMITTED: route {route.id} | tx {last_receipt.tx_hash}")
        return TransferHandle(
            route_id=route.id,
            tx_hash=last_receipt.tx_hash,
            from_chain=route.from_chain,
            to_chain=route.to_chain,
            bridge=last_tool,
        )
