"""Helper modules for the Storybook Web application."""

__all__ = [
    "address_validation",
    "apportionment",
    "pricing",
    "sanitize",
]
