import asyncio
import yaml
import sys
import questionary
from rich.live import Live
from rich.table import Table
from rich.layout import Layout
from rich.console import Console
from rich.panel import Panel

# Import Engines
from leadlag.logger import setup_console_logger, AsyncAuditLogger
from leadlag.engine import CausalityEngine
from leadlag.feed import FeedEngine
from leadlag.server import DashboardServer
from leadlag.persistence import SnapshotWriter
from leadlag import queries

# --- UI HELPER FUNCTIONS ---

def startup_selection(config):
    """Interactive CLI to select the asset universe."""
    print("\n🚀 ALPHAFLOW CAUSALITY ENGINE \n")
    coins = questionary.checkbox(
        "Select Assets to Track:",
        choices=[questionary.Choice(c, checked=True) for c in config['supported_coins']],
    ).ask()
    if not coins or len(coins) < 2:
        print("Need at least 2 assets for lead-follow analysis. Exiting.")
        sys.exit()
    return coins

def generate_dashboard(engine, server, min_samples):
    """
    Creates the Rich Console Dashboard layout.
    Shows Live Prices, Best Lead-Follow Pairs and engine statistics.
    """

    # 1. Price Table
    price_table = Table(title="📡 Live Market Feed")
    price_table.add_column("Asset", style="cyan")
    price_table.add_column("Price (USD)", justify="right", style="green")
    price_table.add_column("Δ%", justify="right")

    for coin, state in engine.prices().items():
        pct = state['changePercent']
        style = "green" if pct > 0 else "red" if pct < 0 else "white"
        price_table.add_row(coin, f"${state['price']:,.4f}", f"[{style}]{pct:+.3f}%[/{style}]")

    # 2. Best Pairs Table
    pairs_table = Table(title="🔗 Best Lead-Follow Pairs")
    pairs_table.add_column("Leader", style="magenta")
    pairs_table.add_column("Follower", style="cyan")
    pairs_table.add_column("Rate", justify="right", style="green")
    pairs_table.add_column("Avg Lag", justify="right")
    pairs_table.add_column("Mag", justify="right")
    pairs_table.add_column("N", justify="right")

    best = queries.best_pairs(engine, min_samples)
    for p in best['pairs'][:10]:
        pairs_table.add_row(
            p['leader'], p['follower'],
            f"{p['followRate']:.1%}",
            f"{p['avgLag'] / 1000:.1f}s",
            f"{p['avgMagnitude']:.2f}",
            str(p['sampleSize']),
        )

    # Layout Construction
    layout = Layout()
    layout.split_column(
        Layout(name="top"),
        Layout(name="bottom")
    )

    layout["top"].split_row(
        Layout(Panel(price_table)),
        Layout(Panel(pairs_table))
    )

    health = server.health()
    footer = Panel(
        f"[bold gold1]TICKS: {health['totalTicks']:,} | LIVE LEADERS: {health['leaderEvents']} | "
        f"DIVERGENCES: {engine.stats.divergence_events:,} | CLIENTS: {health['connectedClients']} | "
        f"FEED: {'UP' if health['coinbaseConnected'] else 'DOWN'}[/bold gold1]",
        style="white on blue",
    )
    layout["bottom"].update(footer)
    layout["bottom"].size = 3

    return layout

# --- MAIN CONTROLLER ---

class CausalityService:
    def __init__(self, selected_coins, config):
        self.coins = selected_coins
        self.config = config

        self.logger = setup_console_logger("AlphaFlow", config.get('logging', {}).get('level', 'INFO'))
        self.audit_log = AsyncAuditLogger(config['audit']['leader_log'])

        self.engine = CausalityEngine(self.coins, self.config, self.logger, self.audit_log)
        self.feed = FeedEngine(self.coins, self.engine.submit, self.config, self.logger)
        self.server = DashboardServer(self.engine, self.config, self.logger, feed=self.feed)
        self.persistence = SnapshotWriter(self.engine, self.config, self.logger)
        self.min_samples = self.config.get('causality', {}).get('min_samples', 10)

    async def run(self, show_dashboard: bool = True):
        try:
            await self.audit_log.start()
            await self.engine.start()
            await self.persistence.start()
            await self.server.start()

            delay = self.config.get('feed', {}).get('startup_delay_seconds', 5)
            self.logger.info(f"⏳ Waiting {delay} seconds before connecting to market data...")
            await asyncio.sleep(delay)
            await self.feed.start()

            if show_dashboard:
                console = Console()
                with Live(console=console, refresh_per_second=2) as live:
                    while True:
                        live.update(generate_dashboard(self.engine, self.server, self.min_samples))
                        await asyncio.sleep(0.5)
            else:
                await asyncio.Event().wait()
        finally:
            print("Shutting down resources...")
            # Stop ingestion first, then let persistence flush
            await self.feed.shutdown()
            await self.engine.shutdown()
            await self.server.shutdown()
            await self.persistence.shutdown()
            await self.audit_log.shutdown()

def load_config(path="config.yaml"):
    with open(path, "r") as f: return yaml.safe_load(f)

if __name__ == "__main__":
    raw_conf = load_config()
    ui = raw_conf.get('ui', {})
    try:
        if ui.get('interactive_selection', True):
            sel_coins = startup_selection(raw_conf)
        else:
            sel_coins = raw_conf['supported_coins']
        service = CausalityService(sel_coins, raw_conf)
        try:
            import uvloop
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass
        asyncio.run(service.run(show_dashboard=ui.get('dashboard', True)))
    except KeyboardInterrupt:
        print("\n🛑 Engine Stopped by User.")
        sys.exit()
