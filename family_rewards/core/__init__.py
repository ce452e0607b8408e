"""Core state machine: persistence, transitions and the mutation service."""
