"""
Models module - Ensemble synthesis over base-learner picks.

This module provides:
- BasePick: one algorithm's pick for a match
- MetaPick: the blended ensemble recommendation
- EnsembleSynthesizer: consensus, boosting, patterns, diversity and stacking
- SynthesisClient: optional external synthesis service

Usage:
    from models import BasePick, EnsembleSynthesizer

    synthesizer = EnsembleSynthesizer(trust_query)
    meta = synthesizer.synthesize(picks, home_form=['W', 'W', 'L'])
    print(f"{meta.recommended} @ {meta.confidence:.0f}%")
"""

from models.ensemble import (
    BasePick,
    BoostingState,
    EnsembleConfig,
    EnsembleSynthesizer,
    MetaPick,
    SequentialPattern,
    apply_gradient_boosting,
    detect_sequential_pattern,
    diversity_score,
    stack,
)
from models.synthesis import SynthesisClient

__all__ = [
    # Data classes
    'BasePick',
    'MetaPick',
    'EnsembleConfig',
    'SequentialPattern',
    'BoostingState',

    # Synthesis
    'EnsembleSynthesizer',
    'SynthesisClient',

    # Layers
    'apply_gradient_boosting',
    'detect_sequential_pattern',
    'diversity_score',
    'stack',
]
