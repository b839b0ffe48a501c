"""Core infrastructure for LLKB: configuration, errors, logging, constants."""
