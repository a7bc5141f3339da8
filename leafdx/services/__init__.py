"""Diagnostics services: tensor codec and prediction orchestration."""

from leafdx.services.prediction import PredictionService


__all__ = ['PredictionService']
