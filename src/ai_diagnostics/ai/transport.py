"""Asynchronous request transports for the analysis service.

A transport performs one POST per :meth:`Transport.send` call and reports the
outcome through a callback exactly once, unless the returned handle is
cancelled first. Callbacks always run later on the event loop, never from
inside ``send`` itself.
"""

from __future__ import annotations

import asyncio
import contextlib
import errno
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import httpx

from .client import OutboundRequest

LOGGER = logging.getLogger(__name__)

TransportCallback = Callable[["TransportResult"], None]

_TERMINATE_GRACE_SECONDS = 2.0
_HANDLE_IDS = itertools.count(1)


@dataclass(slots=True, frozen=True)
class TransportResult:
    """Terminal result of one transport operation."""

    ok: bool
    body: str = ""
    error: str | None = None
    exit_code: int | None = None
    unavailable: bool = False
    status_code: int | None = None

    @classmethod
    def success(cls, body: str, *, status_code: int | None = None) -> TransportResult:
        return cls(ok=True, body=body, exit_code=0, status_code=status_code)

    @classmethod
    def failure(cls, message: str, *, exit_code: int | None = None) -> TransportResult:
        return cls(ok=False, error=message, exit_code=exit_code)

    @classmethod
    def unavailable_result(cls, message: str) -> TransportResult:
        return cls(ok=False, error=message, unavailable=True)


class TransportHandle:
    """Cancellable reference to one in-flight transport operation."""

    __slots__ = ("handle_id", "request", "_task", "_process", "_cancelled", "_delivered")

    def __init__(self, request: OutboundRequest) -> None:
        self.handle_id = next(_HANDLE_IDS)
        self.request = request
        self._task: asyncio.Task[None] | None = None
        self._process: Any = None
        self._cancelled = False
        self._delivered = False

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "done" if self._delivered else "pending"
        return f"<TransportHandle #{self.handle_id} {state}>"

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._delivered or self._cancelled

    def cancel(self) -> None:
        """Best-effort termination; no callback is made after this returns."""

        if self._cancelled or self._delivered:
            return
        self._cancelled = True
        _terminate_process(self._process)
        task = self._task
        if task is not None and not task.done():
            task.cancel()

    def attach_task(self, task: asyncio.Task[None]) -> None:
        self._task = task

    def attach_process(self, process: Any) -> None:
        self._process = process

    def deliver(self, callback: TransportCallback, result: TransportResult) -> bool:
        """Invoke ``callback`` once unless cancelled or already delivered."""

        if self._cancelled or self._delivered:
            return False
        self._delivered = True
        try:
            callback(result)
        except Exception:  # pragma: no cover - callback isolation
            LOGGER.exception("Transport callback failed for %r", self)
        return True


class Transport(Protocol):
    """Interface implemented by every request transport."""

    def send(self, request: OutboundRequest, callback: TransportCallback) -> TransportHandle:  # pragma: no cover - protocol
        ...

    async def aclose(self) -> None:  # pragma: no cover - protocol
        ...


class CurlTransport:
    """Spawns the ``curl`` command line client for every request."""

    name = "curl"

    def __init__(
        self,
        *,
        executable: str = "curl",
        extra_args: tuple[str, ...] = (),
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.executable = executable
        self.extra_args = tuple(extra_args)
        self._loop = loop
        self._handles: set[TransportHandle] = set()

    def build_args(self, request: OutboundRequest) -> list[str]:
        args = ["-s", "-X", request.method, request.endpoint, "--data-binary", "@-"]
        for line in request.header_lines():
            args.extend(["-H", line])
        args.extend(self.extra_args)
        return args

    def send(self, request: OutboundRequest, callback: TransportCallback) -> TransportHandle:
        loop = self._loop or asyncio.get_running_loop()
        handle = TransportHandle(request)
        task = loop.create_task(self._run(handle, callback))
        handle.attach_task(task)
        self._handles.add(handle)
        task.add_done_callback(lambda _task: self._handles.discard(handle))
        return handle

    async def _run(self, handle: TransportHandle, callback: TransportCallback) -> None:
        args = self.build_args(handle.request)
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            LOGGER.warning("Unable to spawn %s: %s", self.executable, exc)
            if exc.errno == errno.E2BIG:
                handle.deliver(callback, TransportResult.failure(f"Request failed: {exc.strerror}"))
                return
            handle.deliver(
                callback,
                TransportResult.unavailable_result(
                    f"Transport unavailable: failed to spawn '{self.executable}' (is it installed?)"
                ),
            )
            return

        handle.attach_process(process)
        if handle.cancelled:
            _terminate_process(process)
            return
        try:
            stdout, stderr = await process.communicate(handle.request.body.encode("utf-8"))
        except asyncio.CancelledError:
            await _reap_process(process)
            raise

        code = process.returncode
        LOGGER.debug("%s exited with %s (%s bytes)", self.executable, code, len(stdout or b""))
        if code == 0:
            result = TransportResult.success(_decode(stdout))
        else:
            detail = _decode(stderr).strip()
            result = TransportResult.failure(f"Request failed with code {code}: {detail}", exit_code=code)
        handle.deliver(callback, result)

    async def aclose(self) -> None:
        handles = list(self._handles)
        for handle in handles:
            handle.cancel()
        tasks = [handle._task for handle in handles if handle._task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class HttpxTransport:
    """In-process transport backed by :class:`httpx.AsyncClient`."""

    name = "httpx"

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._loop = loop
        self._handles: set[TransportHandle] = set()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def send(self, request: OutboundRequest, callback: TransportCallback) -> TransportHandle:
        loop = self._loop or asyncio.get_running_loop()
        handle = TransportHandle(request)
        task = loop.create_task(self._run(handle, callback))
        handle.attach_task(task)
        self._handles.add(handle)
        task.add_done_callback(lambda _task: self._handles.discard(handle))
        return handle

    async def _run(self, handle: TransportHandle, callback: TransportCallback) -> None:
        request = handle.request
        try:
            response = await self._get_client().request(
                request.method,
                request.endpoint,
                content=request.body.encode("utf-8"),
                headers=request.header_dict(),
            )
        except (httpx.ConnectError, httpx.UnsupportedProtocol) as exc:
            result = TransportResult.unavailable_result(f"Transport unavailable: {exc}")
        except httpx.HTTPError as exc:
            result = TransportResult.failure(f"Request failed: {exc}")
        else:
            LOGGER.debug("POST %s returned HTTP %s", request.endpoint, response.status_code)
            result = TransportResult.success(response.text, status_code=response.status_code)
        handle.deliver(callback, result)

    async def aclose(self) -> None:
        handles = list(self._handles)
        for handle in handles:
            handle.cancel()
        tasks = [handle._task for handle in handles if handle._task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


@dataclass(slots=True)
class _ScriptedReply:
    result: TransportResult
    delay: float = 0.0


@dataclass(slots=True)
class RecordedSend:
    """A request captured by :class:`InMemoryTransport`."""

    request: OutboundRequest
    handle: TransportHandle
    callback: TransportCallback


class InMemoryTransport:
    """Deterministic transport that replays canned bodies and failures.

    Queued replies are consumed in order, one per ``send``. Requests sent with
    no queued reply stay pending until :meth:`complete` or :meth:`fail`.
    """

    name = "memory"

    def __init__(self, *, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._replies: list[_ScriptedReply] = []
        self.sent: list[RecordedSend] = []
        self.closed = False

    @property
    def requests(self) -> list[OutboundRequest]:
        return [record.request for record in self.sent]

    def reply_success(self, body: str, *, delay: float = 0.0) -> None:
        self._replies.append(_ScriptedReply(TransportResult.success(body), delay))

    def reply_failure(self, message: str, *, exit_code: int | None = 1, delay: float = 0.0) -> None:
        self._replies.append(_ScriptedReply(TransportResult.failure(message, exit_code=exit_code), delay))

    def reply_unavailable(self, message: str = "Transport unavailable", *, delay: float = 0.0) -> None:
        self._replies.append(_ScriptedReply(TransportResult.unavailable_result(message), delay))

    def send(self, request: OutboundRequest, callback: TransportCallback) -> TransportHandle:
        loop = self._loop or asyncio.get_running_loop()
        handle = TransportHandle(request)
        self.sent.append(RecordedSend(request=request, handle=handle, callback=callback))
        if self._replies:
            reply = self._replies.pop(0)
            loop.call_later(max(0.0, reply.delay), handle.deliver, callback, reply.result)
        return handle

    def complete(self, index: int, body: str) -> bool:
        """Deliver ``body`` for the ``index``-th request; ``False`` when suppressed."""

        record = self.sent[index]
        return record.handle.deliver(record.callback, TransportResult.success(body))

    def fail(self, index: int, message: str, *, exit_code: int | None = 1) -> bool:
        record = self.sent[index]
        return record.handle.deliver(record.callback, TransportResult.failure(message, exit_code=exit_code))

    async def aclose(self) -> None:
        self.closed = True
        for record in self.sent:
            record.handle.cancel()


def create_transport(settings: Any) -> Transport:
    """Return the transport named by ``settings.transport``."""

    name = getattr(settings, "transport", None) or "curl"
    executable = getattr(settings, "curl_executable", None) or "curl"
    timeout_ms = getattr(settings, "timeout_ms", None)
    # The scheduler watchdog owns the deadline; httpx only guards against hangs past it.
    timeout = timeout_ms / 1000.0 + 5.0 if timeout_ms else None
    normalized = str(name).strip().lower()
    if normalized == CurlTransport.name:
        return CurlTransport(executable=executable)
    if normalized == HttpxTransport.name:
        return HttpxTransport(timeout=timeout)
    if normalized == InMemoryTransport.name:
        return InMemoryTransport()
    raise ValueError(f"Unknown transport '{name}'. Expected 'curl' or 'httpx'.")


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


def _terminate_process(process: Any) -> None:
    if process is None or getattr(process, "returncode", None) is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        process.terminate()


async def _reap_process(process: Any) -> None:
    _terminate_process(process)
    try:
        await asyncio.wait_for(process.wait(), timeout=_TERMINATE_GRACE_SECONDS)
    except asyncio.TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()


__all__ = [
    "CurlTransport",
    "HttpxTransport",
    "InMemoryTransport",
    "RecordedSend",
    "Transport",
    "TransportCallback",
    "TransportHandle",
    "TransportResult",
    "create_transport",
]
