"""HTTP collaborators for storage and remote analysis."""
