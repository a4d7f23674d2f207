"""Application core: configuration, logging, errors and dependencies."""
