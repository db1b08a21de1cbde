"""Shared fixtures: a fully wired engine on deterministic in-memory providers."""

from dataclasses import dataclass

import pytest

from tradebot.database import create_db_and_tables, make_engine
from tradebot.engine.config_store import ConfigStore
from tradebot.engine.controller import BotController
from tradebot.engine.dispatcher import ExecutionDispatcher
from tradebot.engine.journal import TradeJournal
from tradebot.engine.monitor import PositionMonitor
from tradebot.engine.opportunity import Opportunity
from tradebot.engine.scanner import OpportunityScanner
from tradebot.engine.simulator import ProfitabilitySimulator
from tradebot.engine.trades import TradeStore
from tradebot.schemas.engine_config import EngineConfig
from tradebot.services.fake_providers import (
    FakeDiscoveryProvider,
    FakeMarket,
    FakeQuoteProvider,
    PaperExecutionProvider,
    StaticRateSource,
)

TOKEN_A = "0x" + "a1" * 20
TOKEN_B = "0x" + "b2" * 20
TOKEN_C = "0x" + "c3" * 20

# With 0.01 ETH in, 1 gwei gas and ETH at $3000: ~$29.10 net
PROFITABLE = FakeMarket(buy_price=1e-6, sell_price=2e-6)
# Same price both ways, so the round trip only loses gas
FLAT = FakeMarket(buy_price=1e-6, sell_price=1e-6)


def listing(address: str, symbol: str = "TKN", market_cap=50_000, liquidity=5_000, holders=50) -> dict:
    return {
        "address": address,
        "symbol": symbol,
        "marketCapUSD": market_cap,
        "liquidityUSD": liquidity,
        "holdersCount": holders,
    }


def make_opportunity(**overrides) -> Opportunity:
    values = dict(
        token_address=TOKEN_A,
        chain="ethereum",
        symbol="TKN",
        estimated_profit_usd=20.0,
        estimated_gas_usd=0.9,
        route=("ETH", TOKEN_A, "ETH"),
        market_cap_usd=50_000,
        liquidity_usd=5_000,
        holders_count=50,
    )
    values.update(overrides)
    return Opportunity(**values)


@dataclass
class Rig:
    config_store: ConfigStore
    store: TradeStore
    discovery: FakeDiscoveryProvider
    quotes: FakeQuoteProvider
    execution: PaperExecutionProvider
    rates: StaticRateSource
    simulator: ProfitabilitySimulator
    scanner: OpportunityScanner
    dispatcher: ExecutionDispatcher
    monitor: PositionMonitor
    controller: BotController


def build_rig(
    listings: dict[str, list[dict]] | None = None,
    markets: dict[tuple[str, str], FakeMarket] | None = None,
    config: dict | None = None,
    chains: tuple[str, ...] = ("ethereum",),
    journal: TradeJournal | None = None,
) -> Rig:
    config_store = ConfigStore(EngineConfig(**(config or {})))
    store = TradeStore(history_limit=50)
    discovery = FakeDiscoveryProvider(listings or {})
    quotes = FakeQuoteProvider(markets or {}, gas_price=1e9)
    execution = PaperExecutionProvider()
    rates = StaticRateSource({"ethereum": 3000.0, "polygon": 1.0, "solana": 150.0})
    simulator = ProfitabilitySimulator(quotes, rates, config_store)
    scanner = OpportunityScanner(discovery, simulator, store.has_open, config_store)
    dispatcher = ExecutionDispatcher(store, quotes, execution, config_store)
    monitor = PositionMonitor(store, quotes, dispatcher, rates, config_store)
    controller = BotController(
        store=store,
        config_store=config_store,
        scanner=scanner,
        dispatcher=dispatcher,
        monitor=monitor,
        chains=list(chains),
        journal=journal,
    )
    return Rig(
        config_store=config_store,
        store=store,
        discovery=discovery,
        quotes=quotes,
        execution=execution,
        rates=rates,
        simulator=simulator,
        scanner=scanner,
        dispatcher=dispatcher,
        monitor=monitor,
        controller=controller,
    )


@pytest.fixture
def db_engine():
    engine = make_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def journal(db_engine) -> TradeJournal:
    return TradeJournal(db_engine)
