"""Match roster assignment and turn participation tracking.

The algorithmic modules are pure and synchronous: they take snapshots from the
caller and hand values back. I/O adapters live under `rankcore.infra`.
"""
