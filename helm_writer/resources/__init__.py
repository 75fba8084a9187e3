"""Templates embedded in helm-writer, looked up by name."""
