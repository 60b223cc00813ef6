"""Rate-limited bulk sync engine and event key generation."""
