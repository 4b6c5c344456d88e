"""
Context variables for structured logging.

Two groups of variables are tracked:

- worker context (stage, worker_id, domain, event_id), set once per worker
  or per event and attached to every record by the formatters
- message transport context (topic, partition, offset, key, group), scoped
  to the handling of a single consumed record via MessageLogContext
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, List, Optional, Tuple

_stage_name: ContextVar[str] = ContextVar("stage_name", default="")
_worker_id: ContextVar[str] = ContextVar("worker_id", default="")
_domain: ContextVar[str] = ContextVar("domain", default="")
_event_id: ContextVar[str] = ContextVar("event_id", default="")

_message_topic: ContextVar[str] = ContextVar("message_topic", default="")
_message_partition: ContextVar[int] = ContextVar("message_partition", default=-1)
_message_offset: ContextVar[int] = ContextVar("message_offset", default=-1)
_message_key: ContextVar[str] = ContextVar("message_key", default="")
_message_consumer_group: ContextVar[str] = ContextVar("message_consumer_group", default="")

_MESSAGE_VARS: Dict[str, ContextVar] = {
    "topic": _message_topic,
    "partition": _message_partition,
    "offset": _message_offset,
    "key": _message_key,
    "consumer_group": _message_consumer_group,
}


def set_log_context(
    stage: Optional[str] = None,
    worker_id: Optional[str] = None,
    domain: Optional[str] = None,
    event_id: Optional[str] = None,
) -> None:
    if stage is not None:
        _stage_name.set(stage)
    if worker_id is not None:
        _worker_id.set(worker_id)
    if domain is not None:
        _domain.set(domain)
    if event_id is not None:
        _event_id.set(event_id)


def get_log_context() -> Dict[str, str]:
    return {
        "stage": _stage_name.get(),
        "worker_id": _worker_id.get(),
        "domain": _domain.get(),
        "event_id": _event_id.get(),
    }


def clear_log_context() -> None:
    _stage_name.set("")
    _worker_id.set("")
    _domain.set("")
    _event_id.set("")


def set_message_context(
    topic: Optional[str] = None,
    partition: Optional[int] = None,
    offset: Optional[int] = None,
    key: Optional[str] = None,
    consumer_group: Optional[str] = None,
) -> None:
    """Set transport fields for the record being handled. None leaves a field unchanged."""
    values = {
        "topic": topic,
        "partition": partition,
        "offset": offset,
        "key": key,
        "consumer_group": consumer_group,
    }
    for name, value in values.items():
        if value is not None:
            _MESSAGE_VARS[name].set(value)


def get_message_context() -> Dict[str, Any]:
    """
    Get the transport context of the record being handled.

    Key and consumer group are only present when set.
    """
    context: Dict[str, Any] = {
        "message_topic": _message_topic.get(),
        "message_partition": _message_partition.get(),
        "message_offset": _message_offset.get(),
    }
    if _message_key.get():
        context["message_key"] = _message_key.get()
    if _message_consumer_group.get():
        context["message_consumer_group"] = _message_consumer_group.get()
    return context


def clear_message_context() -> None:
    _message_topic.set("")
    _message_partition.set(-1)
    _message_offset.set(-1)
    _message_key.set("")
    _message_consumer_group.set("")


class MessageLogContext:
    """
    Scope transport context to one consumed record.

    Values passed as None keep whatever the enclosing scope had. On exit
    every variable this context touched is reset to its previous value,
    including when the body raises.

    Usage:
        with MessageLogContext(topic="orders", partition=0, offset=12345):
            await handler(message)
    """

    def __init__(
        self,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
        key: Optional[str] = None,
        consumer_group: Optional[str] = None,
    ):
        self.new_context = {
            "topic": topic,
            "partition": partition,
            "offset": offset,
            "key": key,
            "consumer_group": consumer_group,
        }
        self._tokens: List[Tuple[ContextVar, Token]] = []

    def __enter__(self) -> "MessageLogContext":
        for name, value in self.new_context.items():
            if value is not None:
                var = _MESSAGE_VARS[name]
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
        return False
