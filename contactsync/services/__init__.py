"""Domain services: identity, projection, vCards, reconciliation."""
