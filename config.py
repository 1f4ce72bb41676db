"""
Docket RTLS server configuration.
"""

# Tracking orchestrator
TRACKING_CONFIG = {
    "batch_size": 100,              # events per batch cycle
    "batch_interval_s": 1.0,
    "broadcast_interval_s": 0.1,
    "cleanup_interval_s": 30.0,
    "active_window_s": 5.0,         # tags seen within this are broadcast
    "idle_after_s": 30.0,
    "lost_after_s": 60.0,
    "measurement_window_s": 2.0,
    "queue_capacity": 10000,
    "scan_power_boost_db": 3.0,     # intensive scan while finding
    "tracking_room": "rfid:tracking",
}

# Position engine
POSITION_CONFIG = {
    "max_measurement_age_s": 2.0,
    "proximity_confidence": 0.3,
    "centroid_full_confidence_readers": 4,
    "enable_kalman": True,
    "rssi_at_1m_dbm": -30.0,
    "path_loss_exponent": 2.7,
    "min_readers": 4,               # readers needed for trilateration
    "q_accel": 0.1,                 # Kalman process noise
}

# Finding sessions
FINDING_CONFIG = {
    "found_distance_m": 0.5,
    "approaching_distance_m": 5.0,
    "timeout_s": 300.0,
    "success_goal_s": 30.0,
}

# Geiger feedback
GEIGER_CONFIG = {
    "min_beep_rate": 0.5,
    "max_beep_rate": 20.0,
    "max_distance_m": 50.0,
}

# Simulation (main.py --simulate)
SIMULATION_CONFIG = {
    "enabled": True,
    "step_interval_s": 0.5,
    "rssi_noise_db": 2.0,
    "seed": 42,
    "readers": [
        {"reader_id": "R1", "name": "Store A north-west", "kind": "fixed", "position": (0.0, 0.0, 3.0), "zone_id": 1},
        {"reader_id": "R2", "name": "Store A north-east", "kind": "fixed", "position": (12.0, 0.0, 3.0), "zone_id": 1},
        {"reader_id": "R3", "name": "Store A south-west", "kind": "fixed", "position": (0.0, 10.0, 3.0), "zone_id": 1},
        {"reader_id": "R4", "name": "Store A south-east", "kind": "fixed", "position": (12.0, 10.0, 3.0), "zone_id": 1},
        {"reader_id": "G1", "name": "Store A gate", "kind": "gate", "position": (6.0, 10.0, 2.0), "zone_id": 2},
    ],
    "zones": {1: "Store A", 2: "Dispatch"},
    "tags": [
        {"tag_id": "E200001", "position": (3.0, 4.0, 1.0), "velocity": (0.0, 0.0, 0.0)},
        {"tag_id": "E200002", "position": (8.0, 2.0, 1.0), "velocity": (0.3, 0.2, 0.0)},
        {"tag_id": "E200003", "position": (10.0, 8.0, 1.0), "velocity": (0.0, 0.0, 0.0)},
    ],
    "dockets": [
        {"docket_id": 1, "docket_code": "DKT-001", "tag_id": "E200001", "zone_id": 1},
        {"docket_id": 2, "docket_code": "DKT-002", "tag_id": "E200002", "zone_id": 1, "is_high_value": True},
        {"docket_id": 3, "docket_code": "DKT-003", "tag_id": "E200003", "zone_id": 1},
    ],
}

# Output
OUTPUT_CONFIG = {
    "metrics_interval_s": 30.0,     # periodic metrics summary in the log
}

# Logging
LOGGING_CONFIG = {
    "level": "INFO",
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}
