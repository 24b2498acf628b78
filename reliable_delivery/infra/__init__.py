"""Infrastructure: persistence, logging, metrics, resilience, and event delivery."""
