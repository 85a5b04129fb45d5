"""Key layout for the shared durable key-value store."""

KV_PREFIX = "marketiq:"


def _ts(ts_ms: int) -> str:
    return str(int(ts_ms)).zfill(14)


def config_key() -> str:
    return f"{KV_PREFIX}config"


def config_version_prefix() -> str:
    return f"{KV_PREFIX}config:ver:"


def config_version_key(ts_ms: int, suffix: str) -> str:
    return f"{config_version_prefix()}{_ts(ts_ms)}:{suffix}"


def audit_prefix() -> str:
    return f"{KV_PREFIX}audit:"


def audit_key(ts_ms: int, suffix: str) -> str:
    return f"{audit_prefix()}{_ts(ts_ms)}:{suffix}"


def dedup_key(event_id: str) -> str:
    return f"{KV_PREFIX}upd:{event_id}"


def rate_limit_key(scope: str, subject: str, window_key: int) -> str:
    return f"{KV_PREFIX}rl:{scope}:{subject}:{window_key}"


def circuit_key(name: str) -> str:
    return f"{KV_PREFIX}cb:{name}"


def analysis_cache_key(content_hash: str) -> str:
    return f"{KV_PREFIX}analysis:{content_hash}"


def job_key(kind: str, job_id: str) -> str:
    return f"{KV_PREFIX}job:{kind}:{job_id}"
