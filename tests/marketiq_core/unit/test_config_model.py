import pytest

from marketiq_core.config import AppConfig, default_config, normalize_config

pytestmark = pytest.mark.asyncio


@pytest.mark.parametrize("raw", [None, "garbage", 42, [], {}, {"limits": "nope"}])
async def test_garbage_normalizes_to_defaults(raw: object) -> None:
    assert normalize_config(raw) == default_config()


async def test_payload_uses_stored_camel_case_keys() -> None:
    payload = default_config().to_payload()

    assert payload["version"] == 2
    assert payload["walletPublic"] == ""
    assert payload["subscription"]["priceUSDT"] == 2.0
    assert payload["limits"] == {"freeDaily": 3, "freeMonthly": 100}
    assert payload["cache"]["analysisTtlMs"] == 21_600_000
    assert payload["news"]["forexCalendar"]["enabled"] is True
    assert "CUSTOM" in payload["styles"]


async def test_normalization_is_idempotent() -> None:
    once = normalize_config(
        {
            "walletPublic": "  0xabc  ",
            "limits": {"freeDaily": "7", "freeMonthly": 2},
            "styles": {"SCALP": {"label": "Scalp", "enabled": "no"}},
        }
    )
    twice = normalize_config(once.to_payload())

    assert twice == once
    assert twice.to_payload() == once.to_payload()


async def test_values_are_coerced_and_clamped() -> None:
    config = normalize_config(
        {
            "version": 1,
            "walletPublic": "  0xabc  ",
            "subscription": {"priceUSDT": "0", "durationDays": 0, "dailyLimit": True},
            "limits": {"freeDaily": "7", "freeMonthly": 2},
            "commission": {"stepPct": 99, "maxPct": -3},
            "cache": {"analysisTtlMs": 10},
            "security": {"rlWebhookPerMin": 1, "rlAnalyzePerMin": 500, "rlAdminPerMin": "x"},
            "payments": {"chain": "", "minConfirmations": -2},
            "features": {"visionEnabled": "yes", "chartEnabled": 0},
        }
    )

    assert config.version == 2
    assert config.wallet_public == "0xabc"
    assert config.subscription.price_usdt == 0.1
    assert config.subscription.duration_days == 1
    assert config.subscription.daily_limit == 50
    assert config.limits.free_daily == 7
    assert config.limits.free_monthly == 7
    assert (config.commission.step_pct, config.commission.max_pct) == (50, 0)
    assert config.cache.analysis_ttl_ms == 60_000
    assert config.cache.analysis_ttl_seconds == 60.0
    assert config.security.rl_webhook_per_min == 10
    assert config.security.rl_analyze_per_min == 120
    assert config.security.rl_admin_per_min == 120
    assert config.payments.chain == "bsc"
    assert config.payments.min_confirmations == 0
    assert config.features.vision_enabled is True
    assert config.features.chart_enabled is False


async def test_styles_and_prompts_keep_custom_entry() -> None:
    config = normalize_config(
        {
            "styles": {"SCALP": {"label": "Scalp"}, "": {"label": "ignored"}},
            "prompts": {"perStyle": {"SCALP": "Scalp fast.", "RTM": 5}},
        }
    )

    assert config.styles["SCALP"].label == "Scalp"
    assert config.styles["CUSTOM"].label == "Custom Prompt"
    assert "" not in config.styles
    assert config.prompts.per_style["SCALP"] == "Scalp fast."
    assert config.prompts.per_style["RTM"] == default_config().prompts.per_style["RTM"]
    assert "CUSTOM" in config.prompts.per_style


async def test_snake_case_keys_are_accepted() -> None:
    config = normalize_config({"wallet_public": "0x1", "limits": {"free_daily": 4}})

    assert config.wallet_public == "0x1"
    assert config.limits.free_daily == 4


async def test_news_lists_drop_non_strings() -> None:
    config = normalize_config(
        {"news": {"rss": ["https://a.test/rss", 3, None], "ttlMs": 5, "forexCalendar": {"enabled": False}}}
    )

    assert config.news.rss == ["https://a.test/rss"]
    assert config.news.ttl_ms == 60_000
    assert config.news.forex_calendar.enabled is False
    assert config.news.forex_calendar.sources == default_config().news.forex_calendar.sources


async def test_app_config_instance_is_accepted() -> None:
    config = AppConfig(wallet_public="0xfeed")

    assert normalize_config(config).wallet_public == "0xfeed"
