"""Redis backend and the cache-aside store built on it."""
