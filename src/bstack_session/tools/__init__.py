"""Building blocks used by the session launcher."""
