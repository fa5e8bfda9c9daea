"""HTTP transport for the contacts protocol."""
