"""Chain table, risk tiers and classifier thresholds."""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class ChainInfo:
    name: str
    native_symbol: str
    chain_id: int
    native_token: str  # address used for the native side of a swap quote
    native_decimals: int
    coingecko_id: str
    default_usd_rate: float


EVM_NATIVE_TOKEN = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
SOL_NATIVE_MINT = "So11111111111111111111111111111111111111112"

SUPPORTED_CHAINS: dict[str, ChainInfo] = {
    "ethereum": ChainInfo("Ethereum", "ETH", 1, EVM_NATIVE_TOKEN, 18, "ethereum", 3000.0),
    "polygon": ChainInfo("Polygon", "MATIC", 137, EVM_NATIVE_TOKEN, 18, "polygon-ecosystem-token", 1.0),
    "bsc": ChainInfo("BNB Chain", "BNB", 56, EVM_NATIVE_TOKEN, 18, "binancecoin", 300.0),
    "arbitrum": ChainInfo("Arbitrum", "ETH", 42161, EVM_NATIVE_TOKEN, 18, "ethereum", 3000.0),
    "optimism": ChainInfo("Optimism", "ETH", 10, EVM_NATIVE_TOKEN, 18, "ethereum", 3000.0),
    "base": ChainInfo("Base", "ETH", 8453, EVM_NATIVE_TOKEN, 18, "ethereum", 3000.0),
    "solana": ChainInfo("Solana", "SOL", 0, SOL_NATIVE_MINT, 9, "solana", 150.0),
}


def get_chain(chain: str) -> ChainInfo:
    info = SUPPORTED_CHAINS.get(chain)
    if info is None:
        raise KeyError(f"Unsupported chain: {chain}")
    return info


class RiskTier(str, Enum):
    COLD = "cold"
    WARM = "warm"
    HOT = "hot"
    STEAMING = "steaming"
    NOVA = "nova"

    @classmethod
    def from_level(cls, level: int) -> "RiskTier":
        return RISK_TIER_ORDER[level - 1]


RISK_TIER_ORDER: list[RiskTier] = [
    RiskTier.COLD,
    RiskTier.WARM,
    RiskTier.HOT,
    RiskTier.STEAMING,
    RiskTier.NOVA,
]

# tier -> (max_risk, min_profit_usd)
DEFAULT_RISK_LEVELS: dict[RiskTier, tuple[float, float]] = {
    RiskTier.COLD: (1, 1),
    RiskTier.WARM: (2, 2),
    RiskTier.HOT: (3, 4),
    RiskTier.STEAMING: (4, 8),
    RiskTier.NOVA: (5, 15),
}

# Ascending upper bounds; a value below bounds[0] scores 5, at or above bounds[-1] scores 1
MARKET_CAP_BOUNDS = [100_000, 1_000_000, 10_000_000, 100_000_000]
LIQUIDITY_BOUNDS = [10_000, 50_000, 200_000, 1_000_000]
HOLDERS_BOUNDS = [100, 500, 2_000, 10_000]
