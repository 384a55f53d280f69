"""Store circuit breaker."""

from .breaker import BreakerConfig, BreakerStats, CircuitBreaker, CircuitOpenError, CircuitState

__all__ = ["BreakerConfig", "BreakerStats", "CircuitBreaker", "CircuitOpenError", "CircuitState"]
