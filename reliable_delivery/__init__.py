"""Reliable event delivery: transactional outbox, inbox, circuit breakers and retries."""

__version__ = "0.1.0"
