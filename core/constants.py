"""
Constants for the ensemble recalibration engine.

Single source of truth for the registered base-learner algorithms and the
fixed bounds shared by the trust layer and the ensemble consumer.
"""

from typing import Dict


# =============================================================================
# ALGORITHM REGISTRY
# =============================================================================

# Display name -> stable algorithm id (ids are what outcome rows carry)
ALGORITHM_IDS: Dict[str, str] = {
    'ML Power Index': 'f4ce9fdc-c41a-4a5c-9f18-5d732674c5b8',
    'Value Pick Finder': '3a7e2d9b-8c5f-4b1f-9e17-7b31a4dce6c2',
    'Statistical Edge': '85c48bbe-5b1a-4c1e-a0d5-e284e9e952f1',
    'Sharp Money': 'd7f3e8a2-9b4c-4e1a-8f5d-6c2b1a0e9d8f',
}

ALGORITHM_NAMES: Dict[str, str] = {v: k for k, v in ALGORITHM_IDS.items()}


def get_algorithm_name(algorithm_id: str) -> str:
    """Return the display name for an id, or a shortened id if unregistered."""
    return ALGORITHM_NAMES.get(algorithm_id, algorithm_id[:8])


# =============================================================================
# CONFIDENCE BOUNDS
# =============================================================================

# Calibrated confidence shown to consumers
CALIBRATED_CONFIDENCE_MIN = 35.0
CALIBRATED_CONFIDENCE_MAX = 95.0

# Bin-calibrated confidence
BIN_CONFIDENCE_MIN = 45.0
BIN_CONFIDENCE_MAX = 95.0

# Meta-pick confidence after stacking
META_CONFIDENCE_MIN = 40.0
META_CONFIDENCE_MAX = 95.0

# Minimum confidence threshold ceiling for unhealthy algorithms
MAX_MIN_CONFIDENCE = 75.0

# Neutral health reported before any data is seen
NEUTRAL_HEALTH_SCORE = 50

# Tick-level audit entries use this in place of an algorithm id
ALL_ALGORITHMS = '*'
