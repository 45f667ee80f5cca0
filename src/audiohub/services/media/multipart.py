"""Incremental multipart/form-data reader.

Feeds the raw request stream into python-multipart's push parser so file
bytes reach the caller chunk by chunk, while the body is still arriving.
"""

import logging
from collections import deque
from typing import AsyncIterator, Deque, Optional, Tuple

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.requests import ClientDisconnect

from audiohub.services.media.exceptions import UploadRejectedError

logger = logging.getLogger(__name__)

_Event = Tuple[str, object]


class FilePart:
    """A file field whose content is read lazily from the request."""

    def __init__(self, reader: "MultipartFileReader", field_name: str, filename: str, content_type: str):
        self._reader = reader
        self.field_name = field_name
        self.filename = filename
        self.content_type = content_type

    def chunks(self) -> AsyncIterator[bytes]:
        """Iterate over the field's bytes as they arrive."""
        return self._reader.iter_part_data()


class MultipartFileReader:
    """Pull-style wrapper around python-multipart's callback parser."""

    def __init__(self, stream: AsyncIterator[bytes], content_type: str):
        ctype, params = parse_options_header(content_type or "")
        if ctype != b"multipart/form-data":
            raise UploadRejectedError("Expected a multipart/form-data request")
        boundary = params.get(b"boundary")
        if not boundary:
            raise UploadRejectedError("Multipart boundary is missing")

        self._events: Deque[_Event] = deque()
        self._header_field = b""
        self._header_value = b""
        self._stream = stream.__aiter__()
        self._finished = False

        callbacks = {
            "on_part_begin": self._on_part_begin,
            "on_part_data": self._on_part_data,
            "on_part_end": self._on_part_end,
            "on_header_field": self._on_header_field,
            "on_header_value": self._on_header_value,
            "on_header_end": self._on_header_end,
            "on_headers_finished": self._on_headers_finished,
            "on_end": self._on_end,
        }
        self._parser = MultipartParser(boundary, callbacks)

    # Parser callbacks run synchronously inside write(); they only queue events.

    def _on_part_begin(self) -> None:
        self._events.append(("begin", None))

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._events.append(("data", bytes(data[start:end])))

    def _on_part_end(self) -> None:
        self._events.append(("end", None))

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._events.append(("header", (self._header_field.lower(), self._header_value)))
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        self._events.append(("headers_done", None))

    def _on_end(self) -> None:
        self._events.append(("eof", None))

    async def _next_event(self) -> _Event:
        while not self._events:
            if self._finished:
                return ("eof", None)
            try:
                chunk = await self._stream.__anext__()
            except StopAsyncIteration:
                self._finished = True
                self._parser.finalize()
                continue
            except ClientDisconnect as e:
                self._finished = True
                raise UploadRejectedError("Client disconnected while sending the file") from e

            if not chunk:
                continue
            try:
                self._parser.write(chunk)
            except MultipartParseError as e:
                self._finished = True
                raise UploadRejectedError(f"Malformed multipart body: {e}") from e
        return self._events.popleft()

    async def next_file(self) -> Optional[FilePart]:
        """Advance to the next field that carries a filename.

        Non-file fields are skipped. Returns None when the body holds no
        further file field.
        """
        headers: dict[bytes, bytes] = {}
        while True:
            kind, value = await self._next_event()
            if kind == "eof":
                return None
            if kind == "begin":
                headers = {}
            elif kind == "header":
                name, header_value = value  # type: ignore[misc]
                headers[name] = header_value
            elif kind == "headers_done":
                _, disposition = parse_options_header(headers.get(b"content-disposition", b""))
                filename = disposition.get(b"filename")
                if filename is None:
                    continue
                field_name = disposition.get(b"name", b"").decode("utf-8", "replace")
                return FilePart(
                    self,
                    field_name=field_name,
                    filename=filename.decode("utf-8", "replace"),
                    content_type=headers.get(b"content-type", b"").decode("latin-1"),
                )

    async def iter_part_data(self) -> AsyncIterator[bytes]:
        """Yield the current part's data until its closing boundary."""
        while True:
            kind, value = await self._next_event()
            if kind == "data":
                if value:
                    yield value  # type: ignore[misc]
            elif kind == "end":
                return
            elif kind == "eof":
                raise UploadRejectedError("Multipart body ended before the file was complete")
