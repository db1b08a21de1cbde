"""Builds a BotController from Settings.

Provider implementations are chosen here, once. Business logic never checks
which mode it is running in.
"""

import logging

from tradebot.config import Settings
from tradebot.engine.config_store import ConfigStore
from tradebot.engine.controller import BotController
from tradebot.engine.dispatcher import ExecutionDispatcher
from tradebot.engine.journal import TradeJournal
from tradebot.engine.monitor import PositionMonitor
from tradebot.engine.scanner import OpportunityScanner
from tradebot.engine.simulator import ProfitabilitySimulator
from tradebot.engine.trades import TradeStore
from tradebot.services.fake_providers import PaperExecutionProvider, StaticRateSource, demo_universe
from tradebot.services.http_providers import (
    ChainQuoteRouter,
    CoinGeckoRateSource,
    HttpDiscoveryProvider,
    JsonRpcExecutionProvider,
    JupiterQuoteProvider,
    Signer,
    ZeroXQuoteProvider,
)
from tradebot.utils.constants import SUPPORTED_CHAINS

logger = logging.getLogger(__name__)


def build_controller(
    settings: Settings,
    journal: TradeJournal | None = None,
    signer: Signer | None = None,
    config_store: ConfigStore | None = None,
) -> BotController:
    chains = [c for c in settings.chains if c in SUPPORTED_CHAINS]
    unknown = sorted(set(settings.chains) - set(chains))
    if unknown:
        logger.warning(f"Ignoring unsupported chains: {', '.join(unknown)}")

    if settings.provider_mode == "live":
        if not settings.discovery_url:
            raise ValueError("TB_DISCOVERY_URL is required when TB_PROVIDER_MODE=live")
        timeout = settings.http_timeout_sec
        discovery = HttpDiscoveryProvider(settings.discovery_url, timeout=timeout)
        quotes = ChainQuoteRouter(
            evm=ZeroXQuoteProvider(
                settings.zerox_api_url,
                api_key=settings.zerox_api_key,
                taker_address=settings.taker_address,
                timeout=timeout,
            ),
            solana=JupiterQuoteProvider(settings.jupiter_api_url, timeout=timeout),
        )
        rates = CoinGeckoRateSource(settings.coingecko_url, timeout=timeout)
    elif settings.provider_mode == "fake":
        discovery, quotes = demo_universe(chains)
        rates = StaticRateSource()
    else:
        raise ValueError(f"Unknown provider mode: {settings.provider_mode}")

    if not settings.dry_run and signer is not None:
        execution = JsonRpcExecutionProvider(settings.rpc_urls, signer)
        execution_mode = "live"
    else:
        if not settings.dry_run:
            logger.warning("Live execution requested but no signer is configured, using paper execution")
        execution = PaperExecutionProvider()
        execution_mode = "paper"

    history = journal.recent_trades(settings.history_limit) if journal is not None else None
    store = TradeStore(history_limit=settings.history_limit, history=history)
    config_store = config_store or ConfigStore()

    simulator = ProfitabilitySimulator(quotes, rates, config_store)
    scanner = OpportunityScanner(discovery, simulator, store.has_open, config_store)
    dispatcher = ExecutionDispatcher(store, quotes, execution, config_store)
    monitor = PositionMonitor(store, quotes, dispatcher, rates, config_store)

    mode = f"{settings.provider_mode}/{execution_mode}"
    logger.info(f"Built controller: providers={settings.provider_mode}, execution={execution_mode}")
    return BotController(
        store=store,
        config_store=config_store,
        scanner=scanner,
        dispatcher=dispatcher,
        monitor=monitor,
        chains=chains,
        journal=journal,
        mode=mode,
    )
