"""
JSON Mapper Kernel

Shared foundation for the declarative transformation engine:
- Typed, coded exception hierarchy
- Structured JSON logging with request-scoped context
- Immutable domain types for mappings, upserts and change events
- Restricted expression grammar for custom functions and predicates
"""

__version__ = "0.1.0"
