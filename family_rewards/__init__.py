"""Family Rewards — shared chore-points state with real-time multi-client sync."""
