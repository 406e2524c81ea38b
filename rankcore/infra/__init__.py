"""Redis-backed boundary adapters: client factory, per-session lock, timeline event stream."""
