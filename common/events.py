import json
import uuid
from datetime import datetime, timezone

SYNC_ID = str(uuid.uuid4())


def log_event(event, **fields):
    payload = {
        "event": event,
        "sync_id": SYNC_ID,
        "ts": datetime.now(timezone.utc).isoformat(),
        **fields,
    }
    try:
        print(json.dumps(payload, default=str), flush=True)
    except (OSError, ValueError):
        # stdout closed or broken pipe; a lost log line never fails a sync
        pass
