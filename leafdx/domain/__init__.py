"""Domain entities and capability ports."""
