"""Leaf disease diagnostics: segmentation inference, severity scoring and artifact persistence."""

__version__ = '1.0.0'
