from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional


class CdpMethod(str, Enum):
    """The fixed set of instrumentation events a capture subscribes to."""

    LOAD_EVENT_FIRED = "Page.loadEventFired"
    DOM_CONTENT_EVENT_FIRED = "Page.domContentEventFired"
    FRAME_STARTED_LOADING = "Page.frameStartedLoading"
    FRAME_ATTACHED = "Page.frameAttached"
    REQUEST_WILL_BE_SENT = "Network.requestWillBeSent"
    REQUEST_SERVED_FROM_CACHE = "Network.requestServedFromCache"
    DATA_RECEIVED = "Network.dataReceived"
    RESPONSE_RECEIVED = "Network.responseReceived"
    RESOURCE_CHANGED_PRIORITY = "Network.resourceChangedPriority"
    LOADING_FINISHED = "Network.loadingFinished"
    LOADING_FAILED = "Network.loadingFailed"


class CollectorState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    CLOSED = "closed"


@dataclass
class InstrumentationEvent:
    method: CdpMethod
    params: Dict[str, Any]

    def to_message(self) -> Dict[str, Any]:
        return {"method": self.method.value, "params": self.params}


@dataclass(frozen=True)
class ResponseRecord:
    """Read-only view over the `response` of a Network.responseReceived event."""

    request_id: str
    url: str
    status: int
    mime_type: str
    headers: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "ResponseRecord":
        response = params.get("response", {})
        return cls(
            request_id=params.get("requestId", ""),
            url=response.get("url", ""),
            status=response.get("status", 0),
            mime_type=response.get("mimeType", "") or "",
            headers=response.get("headers", {}) or {},
        )

    def header(self, name: str) -> Optional[Any]:
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None


@dataclass(frozen=True)
class NormalizedBody:
    text: str
    pretty: bool = False


@dataclass
class EnrichmentResult:
    """Outcome of one body fetch: a body to merge, or the error that prevented it."""

    event: InstrumentationEvent
    response: ResponseRecord
    body: Optional[str] = None
    pretty: bool = False
    error: Optional[BaseException] = None
    merged: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and self.body is not None

    @classmethod
    def enriched(cls, event: InstrumentationEvent, response: ResponseRecord,
                 normalized: NormalizedBody) -> "EnrichmentResult":
        return cls(event=event, response=response, body=normalized.text, pretty=normalized.pretty)

    @classmethod
    def failed(cls, event: InstrumentationEvent, response: ResponseRecord,
               error: BaseException) -> "EnrichmentResult":
        return cls(event=event, response=response, error=error)


class FetchTask:
    """
    A deferred body fetch for one response event.

    Calling the task runs the wrapped coroutine function; a task can only be
    executed once.
    """

    def __init__(self, event: InstrumentationEvent, response: ResponseRecord,
                 run: Callable[[], Awaitable[EnrichmentResult]]):
        self.event = event
        self.response = response
        self._run = run
        self.executed = False

    async def __call__(self) -> EnrichmentResult:
        if self.executed:
            raise RuntimeError(f"Fetch task for request {self.response.request_id} already executed.")
        self.executed = True
        return await self._run()

    def __repr__(self):
        return f"FetchTask(request_id={self.response.request_id!r}, url={self.response.url!r})"


@dataclass
class BarrierReport:
    results: List[EnrichmentResult] = field(default_factory=list)

    @property
    def enriched(self) -> List[EnrichmentResult]:
        return [result for result in self.results if result.merged]

    @property
    def failures(self) -> List[EnrichmentResult]:
        return [result for result in self.results if not result.ok]


@dataclass
class CaptureResult:
    target_url: str
    archive_path: str
    event_count: int = 0
    enriched_count: int = 0
    failed_count: int = 0
    ignored_count: int = 0
