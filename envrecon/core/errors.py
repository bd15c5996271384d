from __future__ import annotations


class EnvReconError(Exception):
    """Base error for envrecon."""


class ConfigurationError(EnvReconError):
    """Missing or invalid service configuration."""


class ConflictError(EnvReconError):
    """An environment or component with the same unique key already exists."""


class NotFoundError(EnvReconError):
    """A requested environment, component or reconciliation does not exist."""


class PersistenceError(EnvReconError):
    """Unexpected store failure; details are logged, never surfaced."""


class ExternalDependencyError(EnvReconError):
    """CD trigger or object storage call failed."""


class CdAuthError(ExternalDependencyError):
    """CD login failed or the bearer token was rejected."""
