"""Core pipeline configuration & tunable operating rules.

Everything that an operator may need to adjust (poll intervals, provider
pacing, breaker cooldowns, retry ceilings, recovery batch sizes, crawl
limits) lives here as module constants. Values default from environment
variables; the dicts are mutable so tests can monkeypatch individual keys.
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: str) -> bool:
	return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# Gate for starting background loops in the application lifespan.
ENABLE_BACKGROUND_WORKERS: bool = _env_bool("ENABLE_BACKGROUND_WORKERS", "true")

# ---------------------------------- HTTP ---------------------------------- #
HTTP_SETTINGS: dict[str, str | float] = {
	"user_agent": os.getenv(
		"SCRAPER_USER_AGENT",
		"Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36",
	),
	"timeout_seconds": float(os.getenv("SCRAPER_TIMEOUT_SECONDS", "30")),
	"registry_base_url": os.getenv("REGISTRY_BASE_URL", "https://fedresurs.ru"),
	"legacy_base_url": os.getenv("LEGACY_REGISTRY_BASE_URL", "https://old.bankrot.fedresurs.ru"),
	# Browser fetcher waits this long for client-side rendering to settle.
	"render_wait_ms": float(os.getenv("SCRAPER_RENDER_WAIT_MS", "1500")),
}

# ------------------------------ Scrape Workers ----------------------------- #
SCRAPE_WORKER_SETTINGS: dict[str, int | float] = {
	"poll_interval_seconds": float(os.getenv("SCRAPE_POLL_INTERVAL_SECONDS", "30")),
	# Per-item bounded retry; after max_attempts the item is parked as FAILED.
	"max_attempts": int(os.getenv("SCRAPE_MAX_ATTEMPTS", "5")),
	"retry_base_seconds": 30,
	"retry_factor": 2,
	"retry_max_seconds": 3600,
	# Politeness delay between items of one batch.
	"item_delay_seconds": float(os.getenv("SCRAPE_ITEM_DELAY_SECONDS", "1")),
}

# -------------------------------- Discovery -------------------------------- #
DISCOVERY_SETTINGS: dict[str, int | float] = {
	"interval_seconds": float(os.getenv("DISCOVERY_INTERVAL_SECONDS", "3600")),
	"max_pages": int(os.getenv("DISCOVERY_MAX_PAGES", "50")),
}

# ------------------------------ Classification ----------------------------- #
CLASSIFIER_SETTINGS: dict[str, str | int | float] = {
	"api_url": os.getenv("CLASSIFIER_API_URL", "https://api.deepseek.com/chat/completions"),
	"api_key": os.getenv("CLASSIFIER_API_KEY", ""),
	"model": os.getenv("CLASSIFIER_MODEL", "deepseek-chat"),
	"temperature": 0.1,
	"request_interval_seconds": float(os.getenv("CLASSIFIER_REQUEST_INTERVAL_SECONDS", "3.0")),
	"timeout_seconds": float(os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "120")),
	# Lots per provider round-trip in batch mode.
	"batch_chunk_size": int(os.getenv("CLASSIFIER_BATCH_CHUNK_SIZE", "5")),
}

# ----------------------------- Circuit Breaker ---------------------------- #
CIRCUIT_BREAKER: dict[str, int | float] = {
	"payment_cooldown_seconds": 4 * 3600,   # Provider balance exhausted
	"rate_limit_cooldown_seconds": 60,      # Provider throttled us
	"skip_pause_seconds": 10,               # Consumer pause after a Skipped job
}

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, int | float] = {
	"base_seconds": 1,
	"factor": 2,          # Exponential factor
	"max_seconds": 60,
	"jitter_pct": 0.10,   # +/-10% jitter
}

# ---------------------------------- Queue --------------------------------- #
QUEUE_SETTINGS: dict[str, int | float] = {
	"warn_depth": int(os.getenv("QUEUE_WARN_DEPTH", "1000")),
	# Coordinate lookups are paced by the consumer, not the client.
	"coordinates_delay_seconds": float(os.getenv("COORDINATES_DELAY_SECONDS", "20")),
}

# --------------------------------- Recovery -------------------------------- #
RECOVERY_SETTINGS: dict[str, int | float] = {
	"interval_seconds": float(os.getenv("RECOVERY_INTERVAL_SECONDS", "3600")),
	"startup_delay_seconds": float(os.getenv("RECOVERY_STARTUP_DELAY_SECONDS", "60")),
	"batch_size": int(os.getenv("RECOVERY_BATCH_SIZE", "20")),
	"max_failures": int(os.getenv("RECOVERY_MAX_FAILURES", "3")),
	"cooldown_seconds": 3600,
	"error_retry_seconds": 60,
}

# ------------------------------- Trade Status ------------------------------ #
TRADE_STATUS_SETTINGS: dict[str, bool | int | float] = {
	"enabled": _env_bool("TRADE_STATUS_ENABLED", "false"),
	"run_on_startup": _env_bool("TRADE_STATUS_RUN_ON_STARTUP", "true"),
	"run_at_hour": int(os.getenv("TRADE_STATUS_RUN_AT_HOUR", "2")),
	"batch_size": int(os.getenv("TRADE_STATUS_BATCH_SIZE", "10")),
	"delay_between_biddings_seconds": 2,
	"delay_between_batches_seconds": 5,
	"max_pages": int(os.getenv("TRADE_STATUS_MAX_PAGES", "20")),
}

# ------------------------------- Coordinates ------------------------------- #
COORDINATES_SETTINGS: dict[str, str | float] = {
	"base_url": os.getenv("COORDINATES_SERVICE_URL", "http://localhost:8081/"),
	"timeout_seconds": float(os.getenv("COORDINATES_TIMEOUT_SECONDS", "30")),
}

# ------------------------- Platform Enrichment ----------------------------- #
# Price-reduction schedules read from the trading platforms' own lot pages.
ENRICHMENT_SETTINGS: dict[str, str | bool | int | float] = {
	"enabled": _env_bool("ENRICHMENT_ENABLED", "true"),
	"batch_size": int(os.getenv("ENRICHMENT_BATCH_SIZE", "5")),
	"max_retries": int(os.getenv("ENRICHMENT_MAX_RETRIES", "3")),
	# Pause after a batch is drawn uniformly from this range.
	"batch_delay_min_seconds": 10,
	"batch_delay_max_seconds": 15,
	"idle_delay_seconds": float(os.getenv("ENRICHMENT_IDLE_DELAY_SECONDS", "300")),
	"error_delay_seconds": 60,
	# ISO date; biddings created earlier are never selected. Empty means no cut-off.
	"created_after": os.getenv("ENRICHMENT_CREATED_AFTER", ""),
	"mets_base_url": os.getenv("METS_BASE_URL", "https://m-ets.ru"),
	"cdt_base_url": os.getenv("CDT_BASE_URL", "https://bankrot.cdtrf.ru"),
}

__all__ = [
	"ENABLE_BACKGROUND_WORKERS",
	"HTTP_SETTINGS",
	"SCRAPE_WORKER_SETTINGS",
	"DISCOVERY_SETTINGS",
	"CLASSIFIER_SETTINGS",
	"CIRCUIT_BREAKER",
	"BACKOFF_POLICY",
	"QUEUE_SETTINGS",
	"RECOVERY_SETTINGS",
	"TRADE_STATUS_SETTINGS",
	"COORDINATES_SETTINGS",
	"ENRICHMENT_SETTINGS",
]
