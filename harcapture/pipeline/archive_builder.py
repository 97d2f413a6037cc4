import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import parse_qsl, urlparse

from harcapture.models.models import CdpMethod

logger = logging.getLogger(__name__)

HAR_VERSION = "1.2"
CREATOR = {"name": "harcapture", "version": "0.1.0"}
DEFAULT_PORTS = {"http": 80, "https": 443}


def archive_filename(target_url: str) -> str:
    """
    Names the archive of a capture: `<host>.<sha1 of the url path>.har`.

    Only the path takes part in the hash, so query strings and fragments of the
    same page share a file name.
    """
    parsed = urlparse(target_url)
    path = parsed.path or "/"
    digest = hashlib.sha1(path.encode("utf-8")).hexdigest()
    host = parsed.hostname or ""
    if parsed.port is not None and parsed.port != DEFAULT_PORTS.get(parsed.scheme):
        host = f"{host}:{parsed.port}"
    return f"{host}.{digest}.har"


def write_archive(har: Dict[str, Any], path: Path) -> Path:
    path.parent.mkdir(exist_ok=True, parents=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(har, f, ensure_ascii=False)
    logger.info(f"Archive written to '{path}' ({len(har['log']['entries'])} entries).")
    return path


def _iso(wall_time: float) -> str:
    moment = datetime.fromtimestamp(wall_time, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _first_non_negative(*values: Optional[float]) -> float:
    for value in values:
        if value is not None and value >= 0:
            return value
    return -1


def _har_headers(headers: Dict[str, Any]) -> List[Dict[str, str]]:
    # CDP folds repeated headers into one value separated by newlines.
    har = []
    for name, value in (headers or {}).items():
        for line in str(value).split("\n"):
            har.append({"name": name, "value": line})
    return har


def _header(headers: Dict[str, Any], name: str) -> Optional[str]:
    name = name.lower()
    for key, value in (headers or {}).items():
        if key.lower() == name:
            return str(value)
    return None


def _request_cookies(headers: Dict[str, Any]) -> List[Dict[str, str]]:
    cookie_header = _header(headers, "cookie")
    if not cookie_header:
        return []
    cookies = []
    for pair in cookie_header.split(";"):
        name, _, value = pair.strip().partition("=")
        if name:
            cookies.append({"name": name, "value": value})
    return cookies


def _response_cookies(headers: Dict[str, Any]) -> List[Dict[str, Any]]:
    set_cookie = _header(headers, "set-cookie")
    if not set_cookie:
        return []
    cookies = []
    for line in set_cookie.split("\n"):
        parts = [part.strip() for part in line.split(";")]
        name, _, value = parts[0].partition("=")
        if not name:
            continue
        cookie: Dict[str, Any] = {"name": name, "value": value}
        for attribute in parts[1:]:
            key, _, attr_value = attribute.partition("=")
            key = key.lower()
            if key in ("path", "domain", "expires"):
                cookie[key] = attr_value
            elif key == "httponly":
                cookie["httpOnly"] = True
            elif key == "secure":
                cookie["secure"] = True
        cookies.append(cookie)
    return cookies


def _http_version(protocol: Optional[str]) -> str:
    if not protocol:
        return ""
    protocol = protocol.lower()
    if protocol == "h2":
        return "HTTP/2.0"
    if protocol.startswith("h3"):
        return "HTTP/3"
    return protocol.upper()


def _timings(timing: Optional[Dict[str, float]]) -> Dict[str, float]:
    """Converts CDP ResourceTiming offsets (ms after requestTime) into HAR timings."""
    if not timing:
        return {"blocked": -1, "dns": -1, "connect": -1, "ssl": -1, "send": 0, "wait": 0, "receive": 0}

    dns_start = timing.get("dnsStart", -1)
    connect_start = timing.get("connectStart", -1)
    send_start = timing.get("sendStart", 0)
    send_end = timing.get("sendEnd", send_start)
    ssl_start = timing.get("sslStart", -1)
    ssl_end = timing.get("sslEnd", -1)

    dns = -1
    if dns_start >= 0:
        dns = _first_non_negative(connect_start, send_start) - dns_start
    connect = -1
    if connect_start >= 0:
        connect = send_start - connect_start
    ssl = -1
    if ssl_start >= 0 and ssl_end >= 0:
        ssl = ssl_end - ssl_start

    return {
        "blocked": round(_first_non_negative(dns_start, connect_start, send_start), 3),
        "dns": round(dns, 3),
        "connect": round(connect, 3),
        "ssl": round(ssl, 3),
        "send": round(max(send_end - send_start, 0), 3),
        "wait": round(max(timing.get("receiveHeadersEnd", send_end) - send_end, 0), 3),
        "receive": 0,
    }


def _total_time(timings: Dict[str, float]) -> float:
    # ssl is already part of connect
    return round(sum(value for key, value in timings.items() if key != "ssl" and value > 0), 3)


@dataclass
class _Page:
    id: str
    frame_id: Optional[str]
    title: str = ""
    started_wall: Optional[float] = None
    started_ts: Optional[float] = None
    on_content_load: float = -1
    on_load: float = -1

    def to_har(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "startedDateTime": _iso(self.started_wall) if self.started_wall is not None else "",
            "title": self.title,
            "pageTimings": {"onContentLoad": self.on_content_load, "onLoad": self.on_load},
        }


@dataclass
class _Entry:
    har: Dict[str, Any]
    request_time: Optional[float] = None
    decoded_size: int = 0
    from_disk_cache: bool = False
    error: Optional[str] = None
    timing: Dict[str, float] = field(default_factory=dict)


class _ArchiveAssembler:
    """Folds an ordered list of CDP messages into HAR pages and entries."""

    def __init__(self, include_resources_from_disk_cache: bool, include_text_from_response_body: bool):
        self.include_disk_cache = include_resources_from_disk_cache
        self.include_text = include_text_from_response_body
        self.pages: List[_Page] = []
        self.entries: List[_Entry] = []
        self.in_flight: Dict[str, _Entry] = {}
        self.child_frames = set()
        self.root_frame: Optional[str] = None
        self.wall_offset: Optional[float] = None

    @property
    def current_page(self) -> _Page:
        if not self.pages:
            self._new_page(None)
        return self.pages[-1]

    def _new_page(self, frame_id: Optional[str]) -> _Page:
        page = _Page(id=f"page_{len(self.pages) + 1}", frame_id=frame_id)
        self.pages.append(page)
        return page

    def _wall_time(self, params: Dict[str, Any]) -> float:
        wall = params.get("wallTime")
        timestamp = params.get("timestamp")
        if wall is not None:
            if timestamp is not None:
                self.wall_offset = wall - timestamp
            return wall
        if timestamp is not None and self.wall_offset is not None:
            return timestamp + self.wall_offset
        return datetime.now(tz=timezone.utc).timestamp()

    def feed(self, message: Dict[str, Any]):
        try:
            method = CdpMethod(message["method"])
        except ValueError:
            logger.debug(f"Skipping unobserved method {message['method']}.")
            return
        params = message.get("params", {})

        if method is CdpMethod.FRAME_ATTACHED:
            if params.get("parentFrameId"):
                self.child_frames.add(params.get("frameId"))
        elif method is CdpMethod.FRAME_STARTED_LOADING:
            self._on_frame_started_loading(params)
        elif method is CdpMethod.REQUEST_WILL_BE_SENT:
            self._on_request_will_be_sent(params)
        elif method is CdpMethod.REQUEST_SERVED_FROM_CACHE:
            entry = self.in_flight.get(params.get("requestId"))
            if entry:
                entry.har["_fromCache"] = "memory"
        elif method is CdpMethod.RESPONSE_RECEIVED:
            self._on_response_received(params)
        elif method is CdpMethod.DATA_RECEIVED:
            entry = self.in_flight.get(params.get("requestId"))
            if entry:
                entry.decoded_size += params.get("dataLength", 0)
        elif method is CdpMethod.RESOURCE_CHANGED_PRIORITY:
            entry = self.in_flight.get(params.get("requestId"))
            if entry:
                entry.har["_priority"] = params.get("newPriority")
        elif method is CdpMethod.LOADING_FINISHED:
            self._on_loading_finished(params)
        elif method is CdpMethod.LOADING_FAILED:
            self._on_loading_failed(params)
        elif method is CdpMethod.DOM_CONTENT_EVENT_FIRED:
            page = self.current_page
            if page.started_ts is not None:
                page.on_content_load = round((params["timestamp"] - page.started_ts) * 1000, 3)
        elif method is CdpMethod.LOAD_EVENT_FIRED:
            page = self.current_page
            if page.started_ts is not None:
                page.on_load = round((params["timestamp"] - page.started_ts) * 1000, 3)

    def _on_frame_started_loading(self, params: Dict[str, Any]):
        frame_id = params.get("frameId")
        if frame_id in self.child_frames:
            return
        if self.root_frame is None:
            self.root_frame = frame_id
        if frame_id != self.root_frame:
            return
        page = self.pages[-1] if self.pages else None
        # A page with no requests yet is reused rather than left empty.
        if page is None or page.started_ts is not None:
            self._new_page(frame_id)

    def _on_request_will_be_sent(self, params: Dict[str, Any]):
        request = params.get("request", {})
        url = request.get("url", "")
        if url.startswith("data:"):
            return

        request_id = params.get("requestId")
        redirect = params.get("redirectResponse")
        if redirect and request_id in self.in_flight:
            previous = self.in_flight.pop(request_id)
            self._apply_response(previous, redirect)
            self._finish(previous, params.get("timestamp"), redirect.get("encodedDataLength", 0))

        page = self.current_page
        wall = self._wall_time(params)
        timestamp = params.get("timestamp")
        if page.started_ts is None:
            page.started_ts = timestamp
            page.started_wall = wall
            page.title = url

        headers = request.get("headers", {})
        har_request = {
            "method": request.get("method", "GET"),
            "url": url + request.get("urlFragment", ""),
            "httpVersion": "",
            "headers": _har_headers(headers),
            "queryString": [{"name": name, "value": value}
                            for name, value in parse_qsl(urlparse(url).query, keep_blank_values=True)],
            "cookies": _request_cookies(headers),
            "headersSize": -1,
            "bodySize": 0,
        }
        post_data = request.get("postData")
        if post_data:
            har_request["bodySize"] = len(post_data.encode("utf-8"))
            har_request["postData"] = {
                "mimeType": _header(headers, "content-type") or "",
                "text": post_data,
            }

        entry = _Entry(
            har={
                "pageref": page.id,
                "startedDateTime": _iso(wall),
                "time": 0,
                "request": har_request,
                "response": None,
                "cache": {},
                "timings": _timings(None),
                "_requestId": request_id,
                "_initiator": (params.get("initiator") or {}).get("type", ""),
                "_priority": request.get("initialPriority"),
                "_resourceType": (params.get("type") or "").lower(),
            },
            request_time=timestamp,
        )
        self.entries.append(entry)
        self.in_flight[request_id] = entry

    def _apply_response(self, entry: _Entry, response: Dict[str, Any]):
        headers = response.get("headers", {})
        content: Dict[str, Any] = {"size": 0, "mimeType": response.get("mimeType", "")}
        if self.include_text and "body" in response:
            content["text"] = response["body"]

        http_version = _http_version(response.get("protocol"))
        har = entry.har
        har["request"]["httpVersion"] = http_version
        if response.get("requestHeaders"):
            har["request"]["headers"] = _har_headers(response["requestHeaders"])
            har["request"]["cookies"] = _request_cookies(response["requestHeaders"])

        har["response"] = {
            "status": response.get("status", 0),
            "statusText": response.get("statusText", ""),
            "httpVersion": http_version,
            "headers": _har_headers(headers),
            "cookies": _response_cookies(headers),
            "content": content,
            "redirectURL": _header(headers, "location") or "",
            "headersSize": -1,
            "bodySize": -1,
            "_transferSize": 0,
        }
        if response.get("remoteIPAddress"):
            har["serverIPAddress"] = response["remoteIPAddress"]
        if response.get("connectionId") is not None:
            har["connection"] = str(response["connectionId"])

        entry.from_disk_cache = bool(response.get("fromDiskCache"))
        if entry.from_disk_cache:
            har["_fromCache"] = "disk"

        entry.timing = response.get("timing") or {}
        if entry.timing.get("requestTime") is not None:
            entry.request_time = entry.timing["requestTime"]
        har["timings"] = _timings(entry.timing)
        har["time"] = _total_time(har["timings"])

    def _on_response_received(self, params: Dict[str, Any]):
        entry = self.in_flight.get(params.get("requestId"))
        if entry is None:
            logger.debug(f"Response for unknown request {params.get('requestId')}.")
            return
        self._apply_response(entry, params.get("response", {}))

    def _finish(self, entry: _Entry, timestamp: Optional[float], encoded_length: int):
        response = entry.har["response"]
        if response is None:
            return
        response["_transferSize"] = encoded_length
        response["bodySize"] = encoded_length

        content = response["content"]
        if entry.decoded_size:
            content["size"] = entry.decoded_size
        elif "text" in content:
            content["size"] = len(content["text"].encode("utf-8"))

        timings = entry.har["timings"]
        if timestamp is not None and entry.request_time is not None:
            elapsed = (timestamp - entry.request_time) * 1000
            headers_end = entry.timing.get("receiveHeadersEnd", 0)
            timings["receive"] = round(max(elapsed - headers_end, 0), 3)
        entry.har["time"] = _total_time(timings)

    def _on_loading_finished(self, params: Dict[str, Any]):
        entry = self.in_flight.pop(params.get("requestId"), None)
        if entry is not None:
            self._finish(entry, params.get("timestamp"), params.get("encodedDataLength", 0))

    def _on_loading_failed(self, params: Dict[str, Any]):
        entry = self.in_flight.pop(params.get("requestId"), None)
        if entry is None:
            return
        entry.error = params.get("errorText", "")
        entry.har["_errorText"] = entry.error
        if entry.har["response"] is not None:
            self._finish(entry, params.get("timestamp"), 0)

    def build(self) -> Dict[str, Any]:
        entries = []
        for entry in self.entries:
            if entry.har["response"] is None:
                logger.debug(f"Dropping {entry.har['request']['url']} without a response.")
                continue
            if entry.from_disk_cache and not self.include_disk_cache:
                continue
            entries.append(entry.har)

        referenced = {entry["pageref"] for entry in entries}
        pages = [page.to_har() for page in self.pages if page.id in referenced]
        return {
            "log": {
                "version": HAR_VERSION,
                "creator": dict(CREATOR),
                "pages": pages,
                "entries": entries,
            }
        }


def har_from_messages(messages: Iterable[Dict[str, Any]],
                      include_resources_from_disk_cache: bool = True,
                      include_text_from_response_body: bool = True) -> Dict[str, Any]:
    """
    Builds a HAR document from an ordered list of `{method, params}` CDP messages.

    Args:
        messages: The frozen event log of a capture, in arrival order.
        include_resources_from_disk_cache: Keep entries served from the disk cache.
        include_text_from_response_body: Copy captured bodies into `content.text`.

    Returns:
        The HAR document as a dict.
    """
    assembler = _ArchiveAssembler(include_resources_from_disk_cache, include_text_from_response_body)
    for message in messages:
        assembler.feed(message)
    return assembler.build()
