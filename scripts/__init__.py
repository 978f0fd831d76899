"""Command-line entrypoints for skinscan."""
