import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from harcapture.core.content_classifier import is_capture_eligible
from harcapture.core.errors import CollectorStateError
from harcapture.core.scope_filter import ScopeFilter
from harcapture.models.models import (
    CdpMethod,
    CollectorState,
    EnrichmentResult,
    FetchTask,
    InstrumentationEvent,
    ResponseRecord,
)
from harcapture.pipeline.body_fetcher import BodyFetcher

logger = logging.getLogger(__name__)

SHORT_URL_LENGTH = 40


def shorten(url: str) -> str:
    if len(url) <= SHORT_URL_LENGTH:
        return url
    return url[:SHORT_URL_LENGTH] + "..."


class EventCollector:
    """
    Records every instrumentation event of one capture and queues body fetches
    for the responses worth keeping.

    The collector owns the event log and the fetch queue for the lifetime of a
    capture. Fetches are only queued here; they run when the completion barrier
    drains the queue.
    """

    def __init__(self, client, fetcher: BodyFetcher, scope: Optional[ScopeFilter] = None):
        self.client = client
        self.fetcher = fetcher
        self.scope = scope or ScopeFilter()
        self.state = CollectorState.IDLE
        self.events: List[InstrumentationEvent] = []
        self.tasks: List[FetchTask] = []
        self.ignored: List[ResponseRecord] = []
        self._handlers: Dict[CdpMethod, Callable[[Dict[str, Any]], None]] = {}
        self._frozen: Optional[Tuple[InstrumentationEvent, ...]] = None

    def _make_handler(self, method: CdpMethod) -> Callable[[Dict[str, Any]], None]:
        def handler(params: Dict[str, Any]) -> None:
            self.dispatch(method, params)
        return handler

    def start(self):
        """Subscribes to every observed method on the CDP session."""
        if self.state is not CollectorState.IDLE:
            raise CollectorStateError(f"Cannot start a collector that is {self.state.value}.")
        for method in CdpMethod:
            handler = self._make_handler(method)
            self._handlers[method] = handler
            self.client.on(method.value, handler)
        self.state = CollectorState.CAPTURING
        logger.debug(f"Subscribed to {len(self._handlers)} CDP events.")

    def stop(self):
        """Unsubscribes from the CDP session. Events delivered afterwards are dropped."""
        if self.state is CollectorState.CLOSED:
            return
        for method, handler in self._handlers.items():
            self.client.remove_listener(method.value, handler)
        self._handlers.clear()
        self.state = CollectorState.CLOSED
        logger.info(f"Stopped listening: {len(self.events)} events, {len(self.tasks)} bodies queued.")

    def dispatch(self, method: CdpMethod, params: Dict[str, Any]):
        if self.state is not CollectorState.CAPTURING:
            logger.debug(f"Dropping {method.value} received while {self.state.value}.")
            return

        event = InstrumentationEvent(method, params)
        self.events.append(event)

        if method is CdpMethod.RESPONSE_RECEIVED:
            self._on_response_received(event)

    def _on_response_received(self, event: InstrumentationEvent):
        response = ResponseRecord.from_params(event.params)
        if not is_capture_eligible(response, self.scope):
            self.ignored.append(response)
            logger.info(f"IGNORE {shorten(response.url)} {response.status} {response.mime_type}")
            return

        self.tasks.append(FetchTask(event, response, lambda: self.fetcher.fetch(event)))

    def apply(self, result: EnrichmentResult) -> bool:
        """
        Merges the outcome of a fetch task into its event.

        On success only the response `body` is replaced; every other field of the
        response is kept. Failed results leave the event untouched.

        Returns:
            True if the event was enriched.
        """
        response = result.response
        if not result.ok:
            logger.warning(f"FAIL {response.url} {response.status} {response.mime_type} {result.error!r}")
            return False

        current = result.event.params.get("response", {})
        if "body" in current:
            logger.warning(f"Response {response.request_id} already enriched, keeping the first body.")
            return False

        result.event.params["response"] = {**current, "body": result.body}
        logger.info(f"ADD {shorten(response.url)} {response.status} {response.mime_type} {dict(pretty=result.pretty)}")
        return True

    def freeze(self) -> Tuple[InstrumentationEvent, ...]:
        """Returns the final, read-only event log."""
        if self.state is not CollectorState.CLOSED:
            raise CollectorStateError("The event log can only be frozen once the collector is closed.")
        if self._frozen is None:
            self._frozen = tuple(self.events)
        return self._frozen

    def messages(self) -> List[Dict[str, Any]]:
        return [event.to_message() for event in self.freeze()]
