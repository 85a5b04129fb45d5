import pytest

from marketiq_core.config import (
    OWNER_ONLY_FIELDS,
    Role,
    coerce_role,
    default_config,
    propose_patch,
    role_of,
)

pytestmark = pytest.mark.asyncio


async def test_role_resolution_prefers_owner() -> None:
    owners = {"1"}
    admins = {"1", "2"}

    assert role_of(1, owners, admins) is Role.OWNER
    assert role_of(" 2 ", owners, admins) is Role.ADMIN
    assert role_of("3", owners, admins) is Role.USER


async def test_admin_cannot_touch_owner_only_fields() -> None:
    patched = propose_patch(
        Role.ADMIN,
        default_config(),
        {
            "walletPublic": "0xevil",
            "points": {"perInvite": 99},
            "limits": {"freeDaily": 5},
        },
    )

    assert patched.wallet_public == ""
    assert patched.points.per_invite == 6
    assert patched.limits.free_daily == 5
    assert patched.limits.free_monthly == 100


async def test_owner_can_patch_everything() -> None:
    patched = propose_patch(
        "owner",
        default_config(),
        {
            "wallet_public": " 0xowner ",
            "commission": {"stepPct": 5},
            "news": {"forexCalendar": {"enabled": False}},
            "prompts": {"perStyle": {"RTM": "Short RTM."}},
        },
    )

    assert patched.wallet_public == "0xowner"
    assert patched.commission.step_pct == 5
    assert patched.commission.max_pct == 20
    assert patched.news.forex_calendar.enabled is False
    assert patched.news.forex_calendar.sources == default_config().news.forex_calendar.sources
    assert patched.prompts.per_style["RTM"] == "Short RTM."
    assert patched.prompts.per_style["ICT"] == default_config().prompts.per_style["ICT"]


async def test_user_role_changes_nothing() -> None:
    current = default_config()

    patched = propose_patch(Role.USER, current, {"limits": {"freeDaily": 40}})

    assert patched == current


async def test_unknown_keys_and_non_mapping_sections_are_ignored() -> None:
    current = default_config()

    assert propose_patch(Role.OWNER, current, {"bogus": 1, "limits": 5, "version": 9}) == current
    assert propose_patch(Role.OWNER, current, None) == current


async def test_patch_is_pure() -> None:
    current = default_config()
    patch = {"limits": {"freeDaily": 9}}

    propose_patch(Role.ADMIN, current, patch)

    assert current.limits.free_daily == 3
    assert patch == {"limits": {"freeDaily": 9}}


async def test_owner_only_field_set() -> None:
    assert OWNER_ONLY_FIELDS == {"wallet_public", "points", "commission", "prompts", "styles", "news"}


async def test_unknown_role_is_treated_as_user() -> None:
    current = default_config()

    patched = propose_patch("superuser", current, {"limits": {"freeDaily": 9}})

    assert patched == current
    assert patched.limits.free_daily == current.limits.free_daily


async def test_role_names_are_coerced_case_insensitively() -> None:
    assert coerce_role(" Admin ") is Role.ADMIN
    assert coerce_role("OWNER") is Role.OWNER
    assert coerce_role("") is Role.USER
    assert coerce_role(Role.ADMIN) is Role.ADMIN

    patched = propose_patch("ADMIN", default_config(), {"limits": {"freeDaily": 9}})
    assert patched.limits.free_daily == 9
