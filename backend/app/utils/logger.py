import logging
import sys
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("ebay_gateway")


SENSITIVE_KEYS = (
    "client_secret", "access_token", "refresh_token",
    "password", "authorization", "client_id", "code",
)


def mask_value(value: Any) -> str:
    value = str(value)
    if len(value) > 8:
        return f"{value[:4]}...{value[-4:]}"
    return "***"


class EbayConnectionLogger:
    """Bounded in-memory trail of OAuth connection events.

    Kept for operators debugging a failing connect/refresh flow; it is not a
    persistence layer and is lost on restart.
    """

    def __init__(self, max_logs: int = 1000):
        self.max_logs = max_logs
        self.logs: deque = deque(maxlen=max_logs)

    def log_ebay_event(
        self,
        event_type: str,
        description: str,
        request_data: Optional[Dict[str, Any]] = None,
        response_data: Optional[Dict[str, Any]] = None,
        status: str = "info",
        error: Optional[str] = None,
        account_id: Optional[str] = None,
    ):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "account_id": account_id,
            "description": description,
            "request_data": self._sanitize_credentials(request_data) if request_data else None,
            "response_data": self._sanitize_credentials(response_data) if response_data else None,
            "status": status,
            "error": error
        }

        self.logs.append(log_entry)

        log_msg = f"[{event_type}] {description} account_id={account_id}"
        if error:
            logger.error(f"{log_msg} - Error: {error}")
        else:
            logger.info(log_msg)

        return log_entry

    def _sanitize_credentials(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not data:
            return {}

        sanitized = data.copy()
        for key in SENSITIVE_KEYS:
            if key in sanitized and sanitized[key] is not None:
                sanitized[key] = mask_value(sanitized[key])

        return sanitized

    def get_logs(self, limit: Optional[int] = None, account_id: Optional[str] = None) -> list:
        logs = list(self.logs)
        if account_id:
            logs = [entry for entry in logs if entry.get("account_id") == account_id]
        if limit:
            return logs[-limit:]
        return logs

    def clear_logs(self):
        self.logs.clear()
        logger.info("Cleared eBay connection logs")


ebay_logger = EbayConnectionLogger()
