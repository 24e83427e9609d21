"""Infrastructure helpers: HTTP client pool, logging, timezones and health tracking."""
