"""Face-landmark detector adapters."""
