import logging
from typing import Any, Dict, Optional

logger = logging.getLogger("pos.audit")


def audit(action: str, entity: str, record_id: Optional[Any], payload: Optional[Dict[str, Any]] = None):
    """Write one audit line for a ledger mutation."""
    logger.info(
        "%s %s %s",
        action,
        entity,
        record_id,
        extra={"action": action, "entity": entity, "record_id": record_id, "payload": payload or {}},
    )
