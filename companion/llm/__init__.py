"""Completions API access — auth, HTTP client, and stream decoding."""
