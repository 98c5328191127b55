"""Audio level utilities for SessionKit.

Metering samples from the engine are normalised levels in ``[0, 1]``.  These
helpers convert raw float samples into that scale and render a level as a
text bar.
"""

import numpy as np
from loguru import logger

# Levels map dBFS in [FLOOR_DB, 0] linearly onto [0, 1]
FLOOR_DB = -60.0


def db_to_level(db: float, floor_db: float = FLOOR_DB) -> float:
    """Map a dBFS value onto the ``[0, 1]`` level scale.

    Args:
        db: Level in dBFS (0 is full scale)
        floor_db: dBFS value that maps to 0

    Returns:
        Normalised level
    """
    if db <= floor_db:
        return 0.0
    return float(min(1.0, (db - floor_db) / -floor_db))


def level_from_samples(samples: np.ndarray, floor_db: float = FLOOR_DB) -> float:
    """Calculate a normalised level from float samples in ``[-1, 1]``.

    Args:
        samples: Audio samples
        floor_db: dBFS value that maps to 0

    Returns:
        Level in ``[0, 1]``; ``0.0`` for silence or unusable input
    """
    try:
        samples = np.asarray(samples, dtype=np.float64)
        if samples.size == 0:
            return 0.0

        # Calculate RMS (Root Mean Square)
        rms = float(np.sqrt(np.mean(samples ** 2)))
        if rms <= 0 or not np.isfinite(rms):
            return 0.0

        return db_to_level(20 * np.log10(rms), floor_db)
    except Exception as e:
        logger.debug(f"Error calculating audio level: {e}")
        return 0.0


def draw_level_bar(level: float, width: int = 50) -> str:
    """Create a visual bar representation of a normalised level.

    Args:
        level: Level in ``[0, 1]``; values outside are clipped
        width: Width of the bar in characters

    Returns:
        A string representation of the level bar
    """
    level = max(0.0, min(1.0, level))
    filled = int(level * width)
    bar = '█' * filled + '░' * (width - filled)
    return f"[{bar}] {level:.2f}"
