"""Relational repositories."""

from leafdx.repositories.memory import (
    InMemoryDatabase,
    InMemoryImageRepository,
    InMemoryLabelRepository,
    InMemoryMarkTypeRepository,
    InMemoryPredictionMarkRepository,
    InMemoryPredictionRepository,
    InMemoryUserRepository,
    default_labels,
    default_mark_types,
)


__all__ = [
    'InMemoryDatabase',
    'InMemoryImageRepository',
    'InMemoryLabelRepository',
    'InMemoryMarkTypeRepository',
    'InMemoryPredictionMarkRepository',
    'InMemoryPredictionRepository',
    'InMemoryUserRepository',
    'default_labels',
    'default_mark_types',
]
