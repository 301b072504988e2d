from datetime import datetime, timezone

def make_session_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    Every SessionManager calls this once in __init__.
    Keys: connections, reconnect_count, pings_sent,
          ping_failures, last_connected_at.
    """
    return {
        "connections": 0,
        "reconnect_count": 0,
        "pings_sent": 0,
        "ping_failures": 0,
        "last_connected_at": None,
    }

def mark_connected(stats: dict) -> None:
    stats["connections"] += 1
    stats["last_connected_at"] = datetime.now(timezone.utc).isoformat()

def mask_device(device: str) -> str:
    """
    Shortens a device token for logs: 'a1b2c3d4...e5f6'.
    Full tokens are long hex blobs that drown out everything else on the line.
    """
    if len(device) <= 12:
        return device
    return f"{device[:8]}...{device[-4:]}"
