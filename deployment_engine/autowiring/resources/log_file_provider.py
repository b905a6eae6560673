"""
Event provider copied into a hosted application's bin directory.

Appends health and lifetime events to the file named by the
UHURU_LOG_FILE application setting, and errors to UHURU_ERROR_LOG_FILE.
"""

import os
from datetime import datetime, timezone


class LogFileEventProvider:
    def __init__(self, settings=None):
        settings = settings or os.environ
        self.log_file = settings.get("UHURU_LOG_FILE")
        self.error_log_file = settings.get("UHURU_ERROR_LOG_FILE") or self.log_file

    def process_event(self, event_name, message, is_error=False):
        target = self.error_log_file if is_error else self.log_file
        if not target:
            return

        stamp = datetime.now(timezone.utc).isoformat()
        with open(target, "a", encoding="utf-8") as f:
            f.write(f"{stamp} [{event_name}] {message}\n")
