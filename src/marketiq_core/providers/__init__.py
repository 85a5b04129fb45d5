"""External providers behind ordered fallback chains."""

from marketiq_core.providers.ai import (
    AIClient,
    AIProvider,
    ChatMessage,
    GeminiProvider,
    OpenAIChatProvider,
    PlatformProvider,
)
from marketiq_core.providers.chain import (
    AttemptRecord,
    ChainFailure,
    ChainSuccess,
    ProviderCandidate,
    ProviderChain,
)
from marketiq_core.providers.credentials import call_with_credentials
from marketiq_core.providers.market_data import (
    Candle,
    MarketDataService,
    MarketSnapshot,
    snapshot_from_candles,
)

__all__ = [
    "AIClient",
    "AIProvider",
    "AttemptRecord",
    "Candle",
    "ChainFailure",
    "ChainSuccess",
    "ChatMessage",
    "GeminiProvider",
    "MarketDataService",
    "MarketSnapshot",
    "OpenAIChatProvider",
    "PlatformProvider",
    "ProviderCandidate",
    "ProviderChain",
    "call_with_credentials",
    "snapshot_from_candles",
]
