"""Incremental multipart/form-data decoder for s3drive.

Wraps the python-multipart push parser. Raw body chunks go in through
``feed()``; a list of part lifecycle events comes out. No part content is
retained by the decoder, so a file part can be forwarded chunk by chunk
while the rest of the body is still arriving.
"""

from dataclasses import dataclass

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from s3drive.errors import BadRequestError


@dataclass(frozen=True)
class PartBegin:
    """Headers of a new part have been read.

    ``filename`` is None for plain form fields.
    """

    field_name: str
    filename: str | None


@dataclass(frozen=True)
class PartData:
    """A slice of the current part's body."""

    data: bytes


@dataclass(frozen=True)
class PartEnd:
    """The current part's body is complete."""


@dataclass(frozen=True)
class FormEnd:
    """The closing boundary was seen; no more parts follow."""


FormEvent = PartBegin | PartData | PartEnd | FormEnd


def _user_safe_decode(src: bytes, charset: str) -> str:
    try:
        return src.decode(charset)
    except (UnicodeDecodeError, LookupError):
        return src.decode("latin-1")


class MultipartDecoder:
    """Turns a multipart/form-data byte stream into ``FormEvent`` lists.

    Attributes:
        charset: Charset used to decode field names and filenames.
        ended: True once the closing boundary has been parsed.
    """

    def __init__(self, content_type: str, charset: str = "utf-8") -> None:
        """Initialize the decoder from the request's Content-Type header.

        Raises:
            BadRequestError: If the content type is not multipart/form-data
                or carries no boundary.
        """
        ctype, params = parse_options_header(content_type)
        if ctype != b"multipart/form-data":
            raise BadRequestError("Expected a multipart/form-data body")
        boundary = params.get(b"boundary")
        if not boundary:
            raise BadRequestError("Missing boundary in multipart/form-data content type")

        self.charset = charset
        self.ended = False
        self._events: list[FormEvent] = []
        self._headers: dict[bytes, bytes] = {}
        self._header_field = b""
        self._header_value = b""

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

    # -- parser callbacks ---------------------------------------------------

    def _on_part_begin(self) -> None:
        self._headers = {}

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if end > start:
            self._events.append(PartData(bytes(data[start:end])))

    def _on_part_end(self) -> None:
        self._events.append(PartEnd())

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        disposition = self._headers.get(b"content-disposition")
        if disposition is None:
            raise BadRequestError("Missing Content-Disposition header in multipart part")
        _, options = parse_options_header(disposition)
        if b"name" not in options:
            raise BadRequestError('The Content-Disposition header field "name" must be provided')
        field_name = _user_safe_decode(options[b"name"], self.charset)
        filename = None
        if b"filename" in options:
            filename = _user_safe_decode(options[b"filename"], self.charset)
        self._events.append(PartBegin(field_name=field_name, filename=filename))

    def _on_end(self) -> None:
        self.ended = True
        self._events.append(FormEnd())

    # -- public API ---------------------------------------------------------

    def _drain(self) -> list[FormEvent]:
        events, self._events = self._events, []
        return events

    def feed(self, chunk: bytes) -> list[FormEvent]:
        """Parse one body chunk and return the events it produced.

        Raises:
            BadRequestError: If the body is not valid multipart data.
        """
        try:
            self._parser.write(chunk)
        except MultipartParseError as e:
            raise BadRequestError(f"Malformed multipart body: {e}") from e
        return self._drain()

    def finalize(self) -> list[FormEvent]:
        """Signal end of input and return any trailing events."""
        try:
            self._parser.finalize()
        except MultipartParseError as e:
            raise BadRequestError(f"Malformed multipart body: {e}") from e
        return self._drain()
