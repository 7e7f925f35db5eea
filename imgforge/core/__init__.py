"""Core module for imgforge: configuration, errors and the transform service."""
