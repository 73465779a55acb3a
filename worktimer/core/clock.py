from datetime import datetime, timezone


def server_now() -> datetime:
    """Current server time (UTC). All elapsed-time math goes through here."""
    return datetime.now(timezone.utc)
