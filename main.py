# main.py
import asyncio
import sys
import questionary
from rich.live import Live
from rich.table import Table
from rich.layout import Layout
from rich.console import Console
from rich.panel import Panel

# Import Engines
from yieldrelay.logger import setup_console_logger, AsyncAuditLogger
from yieldrelay.config import load_config, load_snapshot, parse_snapshot
from yieldrelay.chains import ChainRegistry, to_minimal_units
from yieldrelay.chain_engine import ChainEngine
from yieldrelay.routing import LiFiClient, RouteSelector, summarize_routes
from yieldrelay.route_executor import RouteExecutor
from yieldrelay.bridge_monitor import BridgeExecutionMonitor, format_elapsed
from yieldrelay.decision_engine import RebalanceDecisionEngine, weighted_apy
from yieldrelay.execution import YieldExecutionEngine
from yieldrelay.adapters import default_adapters
from yieldrelay.orchestrator import RebalanceOrchestrator
from yieldrelay.errors import YieldRelayError
from yieldrelay.models import WorkflowStatus

# --- UI HELPER FUNCTIONS ---

def startup_selection(config):
    """Interactive CLI to pick the run mode."""
    print("\n🚀 YIELD RELAY REBALANCER \n")
    mode = questionary.select(
        "Run mode:",
        choices=["Dry run (quote only)", "Live (move funds)"],
        default="Dry run (quote only)" if config['system'].get('dry_run', True) else "Live (move funds)",
    ).ask()
    if mode is None:
        print("No mode selected. Exiting.")
        sys.exit()
    return mode.startswith("Dry")

def generate_dashboard(registry, positions, opportunities, decision, quotes):
    """
    Creates the Rich Console Dashboard layout.
    Shows current positions, candidate pools, the decision and competing quotes.
    """

    # 1. Positions Table
    pos_table = Table(title="💰 Current Positions")
    pos_table.add_column("Chain", style="cyan")
    pos_table.add_column("Protocol", style="magenta")
    pos_table.add_column("Amount (USD)", justify="right", style="green")
    pos_table.add_column("APY", justify="right")
    for p in positions:
        pos_table.add_row(registry.name(p.chain), p.protocol, f"${p.amount_usd:,.2f}", f"{p.apy:.2f}%")

    # 2. Opportunities Table
    opp_table = Table(title="📡 Yield Opportunities")
    opp_table.add_column("Chain", style="cyan")
    opp_table.add_column("Protocol", style="magenta")
    opp_table.add_column("APY", justify="right", style="green")
    opp_table.add_column("Risk", justify="right")
    for o in sorted(opportunities, key=lambda o: o.apy, reverse=True)[:8]:
        opp_table.add_row(registry.name(o.chain), o.protocol, f"{o.apy:.2f}%", str(o.risk_score))

    # 3. Quote Table
    quote_table = Table(title="🌉 Route Quotes")
    quote_table.add_column("Bridge", style="magenta")
    quote_table.add_column("Min Out", justify="right", style="green")
    quote_table.add_column("Gas (USD)", justify="right")
    quote_table.add_column("ETA", justify="right")
    for row in summarize_routes(quotes):
        quote_table.add_row(row['bridge'], row['to_amount_min'], f"${row['gas_usd']:.2f}", format_elapsed(row['eta_sec']))

    # Layout Construction
    layout = Layout()
    layout.split_column(
        Layout(name="top"),
        Layout(name="middle"),
        Layout(name="bottom")
    )

    layout["top"].split_row(
        Layout(Panel(pos_table)),
        Layout(Panel(opp_table))
    )
    layout["middle"].update(Panel(quote_table))

    colour = "green" if decision.should_rebalance else "yellow"
    footer = Panel(
        f"[bold {colour}]{'REBALANCE' if decision.should_rebalance else 'HOLD'}[/bold {colour}] "
        f"| Current APY {weighted_apy(positions):.2f}% | {decision.reason}",
        style="white on blue",
    )
    layout["bottom"].update(footer)
    layout["bottom"].size = 3

    return layout

# --- MAIN CONTROLLER ---

class RebalanceBot:
    def __init__(self, config, dry_run):
        self.config = config
        self.config['system']['dry_run'] = dry_run

        self.audit_log = AsyncAuditLogger(self.config['audit']['log_file'])
        self.logger = setup_console_logger("YieldRelay", self.config['system'].get('log_level', 'INFO'))

        self.registry = ChainRegistry(self.config.get('chains'))
        self.chain_engine = ChainEngine(self.registry, self.config, self.logger)
        self.client = LiFiClient(self.config, self.logger)
        self.selector = RouteSelector(self.client, self.registry, self.config, self.logger)
        self.decision_engine = RebalanceDecisionEngine(self.config)
        self.yield_engine = YieldExecutionEngine(
            self.chain_engine, self.registry, self.logger,
            adapters=default_adapters(self.config, self.logger),
        )
        self.orchestrator = RebalanceOrchestrator(
            self.config,
            self.decision_engine,
            self.selector,
            RouteExecutor(self.client, self.logger),
            BridgeExecutionMonitor(self.client, self.config, self.logger),
            self.yield_engine,
            self.chain_engine,
            self.registry,
            self.logger,
            self.audit_log,
        )

    async def run(self, snapshot):
        address, profile, positions, opportunities = parse_snapshot(snapshot)
        console = Console()
        try:
            await self.audit_log.start()

            decision = self.decision_engine.decide(profile, positions, opportunities)
            quotes = []
            if decision.is_cross_chain:
                request = self.selector.build_request(
                    decision.from_chain, decision.to_chain, to_minimal_units(decision.amount_usd),
                    address, profile.slippage_fraction,
                )
                quotes = await self.selector.get_quotes(request)

            console.print(generate_dashboard(self.registry, positions, opportunities, decision, quotes), height=30)
            if not decision.should_rebalance:
                return

            live = not self.config['system']['dry_run']
            if live:
                print("Initializing Diagnostic Checks...")
                is_healthy = await self.chain_engine.initialize({decision.from_chain, decision.to_chain})
                if not is_healthy:
                    print("❌ Diagnostic Failed. Check RPC URLs and wallet key.")
                    return

                pre = await self.yield_engine.is_depositable(decision.opportunity.to_pool())
                if not pre.ok:
                    print(f"❌ Destination pool not depositable: {pre.reason}")
                    return

                confirmed = await questionary.confirm(
                    f"Move ${decision.amount_usd:,.2f} from {self.registry.name(decision.from_chain)} "
                    f"to {decision.opportunity.protocol} on {self.registry.name(decision.to_chain)}?",
                    default=False,
                ).ask_async()
                if not confirmed:
                    print("Aborted. No funds moved.")
                    return

            with Live(Panel("⏳ Running rebalance workflow..."), console=console, refresh_per_second=4) as view:
                try:
                    outcome = await self.orchestrator.run_cycle(profile, positions, opportunities, address)
                except YieldRelayError as e:
                    view.update(Panel(f"[bold red]WORKFLOW FAILED[/bold red]: {e}"))
                    return

                colour = "green" if outcome.status is WorkflowStatus.COMPLETED else "yellow"
                view.update(Panel(f"[bold {colour}]{outcome.status.value}[/bold {colour}]: {outcome.reason}"))
        finally:
            print("Shutting down resources...")
            await self.audit_log.stop()
            await self.client.shutdown()
            await self.chain_engine.shutdown()

if __name__ == "__main__":
    conf = load_config("config.yaml")
    try:
        snap = load_snapshot(sys.argv[1] if len(sys.argv) > 1 else conf['inputs']['snapshot'])
        dry = startup_selection(conf)
        bot = RebalanceBot(conf, dry)
        try:
            import uvloop
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass
        asyncio.run(bot.run(snap))
    except KeyboardInterrupt:
        print("\n🛑 Rebalancer Stopped by User.")
        sys.exit()
