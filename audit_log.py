# audit_log.py
import csv
import logging
import os
from threading import Lock
from typing import Optional

from utils import now_iso

logger = logging.getLogger(__name__)


class AuditLog:
    """
    Append-only CSV trail of write operations (prices set, readings recorded, settlements).

    Columns:
      timestamp, action, entity_id, station_id, route, actor_ip, user_agent, note

    A failed write is logged and otherwise ignored; the business write it describes
    has already committed.
    """

    FIELDS = [
        "timestamp", "action", "entity_id", "station_id",
        "route", "actor_ip", "user_agent", "note",
    ]

    def __init__(self, path: str):
        self.path = path
        self._lock = Lock()

    def append(self, action: str, entity_id: str, station_id: str = "",
               route: str = "", actor_ip: Optional[str] = "", user_agent: str = "", note: str = "") -> None:
        with self._lock:
            try:
                folder = os.path.dirname(self.path)
                if folder:
                    os.makedirs(folder, exist_ok=True)
                is_new = not os.path.isfile(self.path)
                with open(self.path, "a", newline="", encoding="utf-8-sig") as f:
                    writer = csv.DictWriter(f, fieldnames=self.FIELDS)
                    if is_new:
                        writer.writeheader()
                    writer.writerow({
                        "timestamp": now_iso(),
                        "action": action,
                        "entity_id": entity_id,
                        "station_id": station_id or "",
                        "route": route or "",
                        "actor_ip": actor_ip or "",
                        "user_agent": user_agent or "",
                        "note": note or "",
                    })
            except OSError as e:
                logger.warning("Audit log write failed: %s", e)

    def read_all(self):
        if not os.path.isfile(self.path):
            return []
        with self._lock, open(self.path, newline="", encoding="utf-8-sig") as f:
            return list(csv.DictReader(f))
