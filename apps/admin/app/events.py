from __future__ import annotations

import json
import os
import time
from typing import Any, Dict

import logging

import redis

_log = logging.getLogger("simenu.events")


class EventPublisher:
  """
  Publisher for admin domain events (orders, payments).

  With EVENTS_ENABLED=true the JSON payload goes to Redis Pub/Sub on
  ``events:<domain>``; otherwise, or when Redis refuses the publish, the
  event is written to the structured log instead.
  """

  def __init__(self) -> None:
    url = os.getenv("EVENTS_REDIS_URL", "redis://localhost:6379/0")
    self._enabled = os.getenv("EVENTS_ENABLED", "false").lower() == "true"
    self._url = url
    self._client: redis.Redis | None = None
    if self._enabled:
      try:
        self._client = redis.from_url(url)
      except (redis.RedisError, ValueError) as e:
        _log.warning("events: failed to connect to redis '%s': %s", url, e)
        self._enabled = False

  def publish(self, domain: str, event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    data = {
      "domain": domain,
      "type": event_type,
      "ts_ms": int(time.time() * 1000),
      "payload": payload,
    }
    if self._enabled and self._client is not None:
      try:
        self._client.publish(f"events:{domain}", json.dumps(data, default=str))
        return data
      except redis.RedisError as e:
        _log.warning("events: redis publish failed: %s", e)
    _log.info("event", extra={"event": data})
    return data


_publisher = EventPublisher()


def emit_event(domain: str, event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
  """Publishes one event; failures degrade to a log line."""
  return _publisher.publish(domain, event_type, payload)
