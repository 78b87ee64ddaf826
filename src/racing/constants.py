"""Static race tuning values shared by the server and the client layers.

Distances are track units (the forward axis is +z), times are seconds.
None of these are runtime-configurable; server deployment settings live in
``app.config``.
"""

from __future__ import annotations

# Roster
TOTAL_ENTITY_CAP = 5  # humans + AI per session

# Starting grid: 3 cars on the front row, 2 staggered behind.
# Index 0 is the best slot.
LANE_WIDTH = 6.0
GRID_OFFSETS: tuple[tuple[float, float, float], ...] = (
    (-LANE_WIDTH, 0.0, 0.0),             # front left
    (0.0, 0.0, 0.0),                     # front centre
    (LANE_WIDTH, 0.0, 0.0),              # front right
    (-LANE_WIDTH / 2, 0.0, -6.0),        # back left
    (LANE_WIDTH / 2, 0.0, -6.0),         # back right
)

# Lifecycle timers
COUNTDOWN_DELAY = 3.0
CLEANUP_DELAY = 60.0

# Finish geometry
FINISH_DISTANCE = 1000.0
DECELERATION_DISTANCE = 50.0   # past the line, cars ramp down over this zone
STOP_DISTANCE = 100.0          # past the line, cars are considered stopped
STOP_SPEED_EPSILON = 0.5

# AI simulation
AI_TICK_INTERVAL = 0.1
AI_MAX_SPEED = 60.0
AI_BASE_SPEED_RANGE = (0.85, 1.0)   # per-entity fraction of AI_MAX_SPEED
AI_PERTURBATION_RANGE = (0.9, 1.0)  # per-tick fraction of base speed
AI_SMOOTHING = 0.95                 # speed <- speed*a + target*(1-a)

AI_NAMES = (
    "Blaze",
    "Comet",
    "Dynamo",
    "Ember",
    "Falcon",
    "Gale",
    "Havoc",
    "Ion",
)

# Synchronization
POSITION_BROADCAST_INTERVAL = 0.05  # server fan-out, per entity
CLIENT_SEND_INTERVAL = 0.05         # client -> server position updates
INTERPOLATION_WINDOW = 0.1
SNAP_DISTANCE = 10.0
