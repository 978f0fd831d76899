"""Image decoding, pixel sampling and quality scoring."""
