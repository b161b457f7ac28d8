import json
import logging
from typing import Any, Dict, Optional

from ...clock import Clock, utc_now

logger = logging.getLogger("traveltales.audit")

AUDIT_KEY = "auth:audit"
AUDIT_MAX_ENTRIES = 10000
REDACTED_FIELDS = {"password", "current_password", "new_password", "token", "key_value", "api_key"}


def redact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: ("[REDACTED]" if key in REDACTED_FIELDS else value) for key, value in data.items()}


class AuditLog:
    """Security event trail kept in a capped Redis list."""

    def __init__(self, redis_client, clock: Clock = utc_now):
        self.redis = redis_client
        self.clock = clock

    async def record(self, event_type: str, ip: Optional[str] = None, **data: Any) -> None:
        """
        Log security event for audit.

        Args:
            event_type: Type of security event
            ip: Client address, when known
            data: Event data; secret-bearing fields are redacted
        """
        event = {
            "type": event_type,
            "data": redact(data),
            "ip": ip,
            "timestamp": self.clock().isoformat(),
        }
        logger.info(f"{event_type} {json.dumps(event['data'], default=str)}")

        # Store in Redis list for audit trail
        await self.redis.lpush(AUDIT_KEY, json.dumps(event, default=str))

        # Keep last 10000 events
        await self.redis.ltrim(AUDIT_KEY, 0, AUDIT_MAX_ENTRIES - 1)
