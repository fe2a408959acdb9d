"""Invoice snapshots: normalization, derived UI state, polling, filtering."""
