"""
Configuration & Constants
=========================
This module serves as the central registry for global constants.

Why is this file needed?
------------------------
1. Abstraction: It prevents magic numbers (point caps, filter weights,
   timeouts) from being scattered throughout the code.
2. Overrides: Every class that enforces one of these limits accepts it as a
   constructor argument and only falls back to the value defined here.

Exports:
    MAX_POINTS (int): Maximum number of route points per session.
    FILTER_ALPHA (float): Gyro weight of the complementary filter.
"""

APP_NAME: str = "PipeTrace"
APP_VERSION: str = "2.0.0"

# Point constraints
MAX_POINTS: int = 100
MEMO_MAX_LENGTH: int = 50
MAX_SEGMENT_DISTANCE: float = 1000.0  # m

# Display precision of distances (decimal places)
DISTANCE_PRECISION: int = 2

# Sensor fusion
FILTER_ALPHA: float = 0.96
SENSOR_SETTLE_SECONDS: float = 0.8
READING_DECIMALS: int = 1

# AR anchor path
COMPASS_OFFSET_TIMEOUT_SECONDS: float = 2.0

# Reconstruction
SCREEN_DIRECTION_THRESHOLD_PX: float = 1.0
DEFAULT_SEGMENT_DISTANCE: float = 1.0  # m, rendering only

# Persistence: HDF5 attribute size limit is 64KB
ATTRIBUTE_SIZE_LIMIT: int = 60000
