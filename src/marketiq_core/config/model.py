"""Typed runtime configuration with one normalizer per section.

Stored payloads use camelCase keys. ``normalize_config`` accepts partial,
legacy or garbage input and always returns a fully populated ``AppConfig``.
It is idempotent: normalizing a dumped config reproduces the same payload.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CONFIG_VERSION = 2
MIN_ANALYSIS_TTL_MS = 60_000
MIN_NEWS_TTL_MS = 60_000
CUSTOM_STYLE = "CUSTOM"

_MISSING = object()


class _Section(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class SubscriptionSection(_Section):
    price_usdt: float = Field(default=2.0, alias="priceUSDT")
    duration_days: int = 30
    daily_limit: int = 50


class LimitsSection(_Section):
    free_daily: int = 3
    free_monthly: int = 100


class PointsSection(_Section):
    per_invite: int = 6
    redeem_free_sub: int = 500
    buy_sub: int = 1000


class CommissionSection(_Section):
    step_pct: int = 4
    max_pct: int = 20


class BannerSection(_Section):
    enabled: bool = True
    text: str = "Special offer: go pro with a Market IQ subscription!"
    link: str = "https://t.me/"
    image_key: str = ""
    image_url: str = ""


class CacheSection(_Section):
    analysis_ttl_ms: int = 6 * 60 * 60 * 1000

    @property
    def analysis_ttl_seconds(self) -> float:
        return self.analysis_ttl_ms / 1000


class PaymentsSection(_Section):
    auto_verify: bool = True
    min_confirmations: int = 1
    price_tolerance_pct: int = 2
    chain: str = "bsc"
    usdt_contract_bep20: str = "0x55d398326f99059fF775485246999027B3197955"


class StyleOption(_Section):
    enabled: bool = True
    label: str = ""


class PromptsSection(_Section):
    base: str = (
        "You are Market IQ, a professional market analyst. Be precise and "
        "actionable. Use the supplied context (market, symbol, timeframe, live "
        "data, user level and chosen style) and answer in a structured way."
    )
    vision: str = (
        "You are Market IQ Vision. Analyze the chart image and give short "
        "observations and zone confirmations."
    )
    per_style: dict[str, str] = Field(
        default_factory=lambda: {
            "RTM": "Analyze with RTM: base, impulse, fresh zones, clear invalidation and a risk plan.",
            "ICT": "Use ICT concepts: liquidity, order blocks, FVG, session bias and clear invalidation.",
            "PRICE_ACTION": "Pure price action: structure, support/resistance, momentum and clear invalidation.",
            "GENERAL": "General multi-factor technical analysis with clear invalidation.",
            "METHOD": "Method: data, bias, setup, risk, plan. Practical and short.",
            "CUSTOM": "Use the user's custom prompt when ready, otherwise GENERAL.",
        }
    )


class ForexCalendar(_Section):
    enabled: bool = True
    sources: list[str] = Field(
        default_factory=lambda: ["https://nfs.faireconomy.media/ff_calendar_thisweek.json"]
    )


class NewsSection(_Section):
    enabled_default: bool = True
    ttl_ms: int = 10 * 60 * 1000
    rss: list[str] = Field(
        default_factory=lambda: [
            "https://www.coindesk.com/arc/outboundfeeds/rss/",
            "https://cointelegraph.com/rss",
            "https://www.reuters.com/rssFeed/marketsNews",
            "https://feeds.finance.yahoo.com/rss/2.0/headline?s=%5EGSPC&region=US&lang=en-US",
            "https://www.fxstreet.com/rss/news",
        ]
    )
    noise_filters: list[str] = Field(
        default_factory=lambda: [
            "weekly recap",
            "market wrap",
            "what to watch",
            "sponsored",
            "top ",
            "morning news",
            "afternoon news",
            "evening news",
            "recap",
            "roundup",
        ]
    )
    forex_calendar: ForexCalendar = Field(default_factory=ForexCalendar)


class FeaturesSection(_Section):
    chart_enabled: bool = True
    news_enabled: bool = True
    vision_enabled: bool = False
    broadcast_enabled: bool = True


class SecuritySection(_Section):
    rl_webhook_per_min: int = 60
    rl_analyze_per_min: int = 8
    rl_admin_per_min: int = 120


def _default_styles() -> dict[str, StyleOption]:
    return {
        "RTM": StyleOption(label="RTM"),
        "ICT": StyleOption(label="ICT"),
        "PRICE_ACTION": StyleOption(label="Price Action"),
        "GENERAL": StyleOption(label="General Prompt"),
        "METHOD": StyleOption(label="Method"),
        CUSTOM_STYLE: StyleOption(label="Custom Prompt"),
    }


class AppConfig(_Section):
    """Runtime-tunable service configuration."""

    version: int = CONFIG_VERSION
    wallet_public: str = ""
    subscription: SubscriptionSection = Field(default_factory=SubscriptionSection)
    limits: LimitsSection = Field(default_factory=LimitsSection)
    points: PointsSection = Field(default_factory=PointsSection)
    commission: CommissionSection = Field(default_factory=CommissionSection)
    banner: BannerSection = Field(default_factory=BannerSection)
    cache: CacheSection = Field(default_factory=CacheSection)
    payments: PaymentsSection = Field(default_factory=PaymentsSection)
    styles: dict[str, StyleOption] = Field(default_factory=_default_styles)
    prompts: PromptsSection = Field(default_factory=PromptsSection)
    news: NewsSection = Field(default_factory=NewsSection)
    features: FeaturesSection = Field(default_factory=FeaturesSection)
    security: SecuritySection = Field(default_factory=SecuritySection)

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-ready camelCase payload stored in the key-value store."""
        return self.model_dump(mode="json", by_alias=True)


def default_config() -> AppConfig:
    return AppConfig()


# Coercion helpers. Each returns ``fallback`` when the value cannot be used.


def _lookup(raw: object, model: type[BaseModel], name: str) -> object:
    if not isinstance(raw, Mapping):
        return _MISSING
    if name in raw:
        return raw[name]
    alias = model.model_fields[name].alias
    if alias and alias in raw:
        return raw[alias]
    return _MISSING


def _picker(raw: object, model: type[BaseModel]) -> Callable[[str], object]:
    def _pick(name: str) -> object:
        return _lookup(raw, model, name)

    return _pick


def _as_int(value: object, fallback: int) -> int:
    if value is _MISSING or value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else fallback
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return fallback
        return int(number) if math.isfinite(number) else fallback
    return fallback


def _as_float(value: object, fallback: float) -> float:
    if value is _MISSING or value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return fallback
    else:
        return fallback
    return number if math.isfinite(number) else fallback


def _as_bool(value: object, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off", ""):
            return False
    return fallback


def _as_str(value: object, fallback: str, *, allow_empty: bool = True) -> str:
    if isinstance(value, str) and (allow_empty or value):
        return value
    return fallback


def _as_str_list(value: object, fallback: list[str]) -> list[str]:
    if not isinstance(value, list):
        return list(fallback)
    return [item for item in value if isinstance(item, str)]


def _clamp(value: int, low: int, high: int) -> int:
    return min(max(value, low), high)


# Section normalizers.


def normalize_subscription(raw: object, defaults: SubscriptionSection) -> SubscriptionSection:
    pick = _picker(raw, SubscriptionSection)
    return SubscriptionSection(
        price_usdt=max(0.1, _as_float(pick("price_usdt"), defaults.price_usdt)),
        duration_days=max(1, _as_int(pick("duration_days"), defaults.duration_days)),
        daily_limit=max(1, _as_int(pick("daily_limit"), defaults.daily_limit)),
    )


def normalize_limits(raw: object, defaults: LimitsSection) -> LimitsSection:
    free_daily = max(1, _as_int(_lookup(raw, LimitsSection, "free_daily"), defaults.free_daily))
    free_monthly = _as_int(_lookup(raw, LimitsSection, "free_monthly"), defaults.free_monthly)
    return LimitsSection(free_daily=free_daily, free_monthly=max(free_daily, free_monthly))


def normalize_points(raw: object, defaults: PointsSection) -> PointsSection:
    pick = _picker(raw, PointsSection)
    return PointsSection(
        per_invite=max(0, _as_int(pick("per_invite"), defaults.per_invite)),
        redeem_free_sub=max(1, _as_int(pick("redeem_free_sub"), defaults.redeem_free_sub)),
        buy_sub=max(1, _as_int(pick("buy_sub"), defaults.buy_sub)),
    )


def normalize_commission(raw: object, defaults: CommissionSection) -> CommissionSection:
    pick = _picker(raw, CommissionSection)
    return CommissionSection(
        step_pct=_clamp(_as_int(pick("step_pct"), defaults.step_pct), 0, 50),
        max_pct=_clamp(_as_int(pick("max_pct"), defaults.max_pct), 0, 50),
    )


def normalize_banner(raw: object, defaults: BannerSection) -> BannerSection:
    pick = _picker(raw, BannerSection)
    return BannerSection(
        enabled=_as_bool(pick("enabled"), defaults.enabled),
        text=_as_str(pick("text"), defaults.text),
        link=_as_str(pick("link"), defaults.link),
        image_key=_as_str(pick("image_key"), defaults.image_key),
        image_url=_as_str(pick("image_url"), defaults.image_url),
    )


def normalize_cache(raw: object, defaults: CacheSection) -> CacheSection:
    ttl = _as_int(_lookup(raw, CacheSection, "analysis_ttl_ms"), defaults.analysis_ttl_ms)
    return CacheSection(analysis_ttl_ms=max(MIN_ANALYSIS_TTL_MS, ttl))


def normalize_payments(raw: object, defaults: PaymentsSection) -> PaymentsSection:
    pick = _picker(raw, PaymentsSection)
    return PaymentsSection(
        auto_verify=_as_bool(pick("auto_verify"), defaults.auto_verify),
        min_confirmations=max(0, _as_int(pick("min_confirmations"), defaults.min_confirmations)),
        price_tolerance_pct=_clamp(
            _as_int(pick("price_tolerance_pct"), defaults.price_tolerance_pct), 0, 50
        ),
        chain=_as_str(pick("chain"), defaults.chain, allow_empty=False),
        usdt_contract_bep20=_as_str(
            pick("usdt_contract_bep20"), defaults.usdt_contract_bep20, allow_empty=False
        ),
    )


def normalize_styles(raw: object, defaults: dict[str, StyleOption]) -> dict[str, StyleOption]:
    """Merge stored styles over the defaults; ``CUSTOM`` always exists."""
    styles = dict(defaults)
    if isinstance(raw, Mapping):
        for name, value in raw.items():
            if not isinstance(name, str) or not name:
                continue
            base = styles.get(name, StyleOption(label=name))
            styles[name] = StyleOption(
                enabled=_as_bool(_lookup(value, StyleOption, "enabled"), base.enabled),
                label=_as_str(_lookup(value, StyleOption, "label"), base.label),
            )
    styles.setdefault(CUSTOM_STYLE, _default_styles()[CUSTOM_STYLE])
    return styles


def normalize_prompts(raw: object, defaults: PromptsSection) -> PromptsSection:
    per_style = dict(defaults.per_style)
    raw_per_style = _lookup(raw, PromptsSection, "per_style")
    if isinstance(raw_per_style, Mapping):
        per_style.update(
            (name, text)
            for name, text in raw_per_style.items()
            if isinstance(name, str) and isinstance(text, str)
        )
    per_style.setdefault(CUSTOM_STYLE, PromptsSection().per_style[CUSTOM_STYLE])
    return PromptsSection(
        base=_as_str(_lookup(raw, PromptsSection, "base"), defaults.base),
        vision=_as_str(_lookup(raw, PromptsSection, "vision"), defaults.vision),
        per_style=per_style,
    )


def normalize_news(raw: object, defaults: NewsSection) -> NewsSection:
    pick = _picker(raw, NewsSection)
    calendar_raw = pick("forex_calendar")
    calendar_defaults = defaults.forex_calendar
    calendar = ForexCalendar(
        enabled=_as_bool(_lookup(calendar_raw, ForexCalendar, "enabled"), calendar_defaults.enabled),
        sources=_as_str_list(
            _lookup(calendar_raw, ForexCalendar, "sources"), calendar_defaults.sources
        ),
    )
    return NewsSection(
        enabled_default=_as_bool(pick("enabled_default"), defaults.enabled_default),
        ttl_ms=max(MIN_NEWS_TTL_MS, _as_int(pick("ttl_ms"), defaults.ttl_ms)),
        rss=_as_str_list(pick("rss"), defaults.rss),
        noise_filters=_as_str_list(pick("noise_filters"), defaults.noise_filters),
        forex_calendar=calendar,
    )


def normalize_features(raw: object, defaults: FeaturesSection) -> FeaturesSection:
    pick = _picker(raw, FeaturesSection)
    return FeaturesSection(
        chart_enabled=_as_bool(pick("chart_enabled"), defaults.chart_enabled),
        news_enabled=_as_bool(pick("news_enabled"), defaults.news_enabled),
        vision_enabled=_as_bool(pick("vision_enabled"), defaults.vision_enabled),
        broadcast_enabled=_as_bool(pick("broadcast_enabled"), defaults.broadcast_enabled),
    )


def normalize_security(raw: object, defaults: SecuritySection) -> SecuritySection:
    pick = _picker(raw, SecuritySection)
    return SecuritySection(
        rl_webhook_per_min=_clamp(
            _as_int(pick("rl_webhook_per_min"), defaults.rl_webhook_per_min), 10, 600
        ),
        rl_analyze_per_min=_clamp(
            _as_int(pick("rl_analyze_per_min"), defaults.rl_analyze_per_min), 1, 120
        ),
        rl_admin_per_min=_clamp(
            _as_int(pick("rl_admin_per_min"), defaults.rl_admin_per_min), 10, 1000
        ),
    )


def normalize_config(raw: object) -> AppConfig:
    """Build a complete ``AppConfig`` from whatever was stored."""
    if isinstance(raw, AppConfig):
        raw = raw.to_payload()
    defaults = default_config()
    pick = _picker(raw, AppConfig)
    return AppConfig(
        version=CONFIG_VERSION,
        wallet_public=_as_str(pick("wallet_public"), defaults.wallet_public).strip(),
        subscription=normalize_subscription(pick("subscription"), defaults.subscription),
        limits=normalize_limits(pick("limits"), defaults.limits),
        points=normalize_points(pick("points"), defaults.points),
        commission=normalize_commission(pick("commission"), defaults.commission),
        banner=normalize_banner(pick("banner"), defaults.banner),
        cache=normalize_cache(pick("cache"), defaults.cache),
        payments=normalize_payments(pick("payments"), defaults.payments),
        styles=normalize_styles(pick("styles"), defaults.styles),
        prompts=normalize_prompts(pick("prompts"), defaults.prompts),
        news=normalize_news(pick("news"), defaults.news),
        features=normalize_features(pick("features"), defaults.features),
        security=normalize_security(pick("security"), defaults.security),
    )
