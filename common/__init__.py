"""
Shared building blocks: value types, geodesy helpers, error taxonomy,
JSON logging and YAML configuration.
"""
