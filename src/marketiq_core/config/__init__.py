"""Versioned runtime configuration with role-gated patches and rollback."""

from marketiq_core.config.audit import AuditEntry, ConfigSnapshot, config_hash
from marketiq_core.config.model import AppConfig, default_config, normalize_config
from marketiq_core.config.rbac import (
    OWNER_ONLY_FIELDS,
    Role,
    coerce_role,
    propose_patch,
    role_of,
)
from marketiq_core.config.store import ConfigStore, RollbackOutcome, SaveOutcome

__all__ = [
    "OWNER_ONLY_FIELDS",
    "AppConfig",
    "AuditEntry",
    "ConfigSnapshot",
    "ConfigStore",
    "Role",
    "RollbackOutcome",
    "SaveOutcome",
    "coerce_role",
    "config_hash",
    "default_config",
    "normalize_config",
    "propose_patch",
    "role_of",
]
