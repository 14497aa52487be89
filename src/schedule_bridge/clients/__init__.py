"""Adapters that connect the relay to the origin and destination ledgers."""
