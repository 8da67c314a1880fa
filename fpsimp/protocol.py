"""
JSON request/response protocol.

A client writes a stream of JSON objects, each tagged with "request", and
receives exactly one JSON object per request, tagged with "response", in
the same order:

    {"request": "version"}
    {"request": "load-rewrites",
     "rewrites": [{"name": "comm-add", "lhs": "(+ ?a ?b)", "rhs": "(+ ?b ?a)"}]}
    {"request": "simplify-expressions", "exprs": ["(+ 1 2)"], "constant_fold": true}

Responses:

    {"response": "error", "error": "..."}
    {"response": "version", "version": "0.1.0"}
    {"response": "load-rewrites", "n": 1}
    {"response": "simplify-expressions", "iterations": [...], "best": [...]}

A record that is not valid JSON, or not a valid request, gets an error
response; the stream keeps going.
"""

import json
from typing import IO, Annotated, Any, Dict, Iterator, List, Literal, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from . import __version__
from .errors import FpsimpError
from .log import setup_logging
from .session import Session

logger = structlog.get_logger()


# ============================================================
# Messages
# ============================================================

class ProtocolModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RewriteSpec(ProtocolModel):
    name: str
    lhs: str
    rhs: str


class VersionRequest(ProtocolModel):
    request: Literal["version"]


class LoadRewritesRequest(ProtocolModel):
    request: Literal["load-rewrites"]
    rewrites: List[RewriteSpec]


class SimplifyExpressionsRequest(ProtocolModel):
    request: Literal["simplify-expressions"]
    exprs: List[str]
    constant_fold: bool = True


Request = Annotated[
    Union[VersionRequest, LoadRewritesRequest, SimplifyExpressionsRequest],
    Field(discriminator="request"),
]

_REQUEST_ADAPTER: TypeAdapter = TypeAdapter(Request)


class ErrorResponse(ProtocolModel):
    response: Literal["error"] = "error"
    error: str


class VersionResponse(ProtocolModel):
    response: Literal["version"] = "version"
    version: str


class LoadRewritesResponse(ProtocolModel):
    response: Literal["load-rewrites"] = "load-rewrites"
    n: int


class SimplifyExpressionsResponse(ProtocolModel):
    response: Literal["simplify-expressions"] = "simplify-expressions"
    iterations: List[Dict[str, Any]]
    best: List[Dict[str, Any]]


Response = Union[
    ErrorResponse, VersionResponse, LoadRewritesResponse, SimplifyExpressionsResponse,
]


def parse_request(data: Any) -> Request:
    """
    Validate a decoded JSON value as a request.

    Raises:
        ValidationError: If the value is not a well-formed request
    """
    return _REQUEST_ADAPTER.validate_python(data)


def deserialization_error(exc: Exception) -> ErrorResponse:
    if isinstance(exc, ValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        )
        return ErrorResponse(error=f"Deserialization error: {details}")
    return ErrorResponse(error=f"Deserialization error: {exc}")


# ============================================================
# Dispatch
# ============================================================

def handle_request(session: Session, request: Request) -> Response:
    """
    Answer a single request.

    Errors raised while handling (parse errors, missing rules, terms too
    deep to process) are returned as an ErrorResponse; the session is left
    unchanged by a failed request.
    """
    try:
        if isinstance(request, VersionRequest):
            return VersionResponse(version=__version__)

        if isinstance(request, LoadRewritesRequest):
            return LoadRewritesResponse(n=session.load_rewrites(request.rewrites))

        if isinstance(request, SimplifyExpressionsRequest):
            result = session.simplify(request.exprs, constant_fold=request.constant_fold)
            return SimplifyExpressionsResponse(
                iterations=[it.to_dict() for it in result.iterations],
                best=[cmp.to_dict() for cmp in result.best],
            )
    except FpsimpError as exc:
        logger.info("request.failed", request=request.request, error=str(exc))
        return ErrorResponse(error=str(exc))
    except RecursionError:
        # rewriting can build terms deeper than any accepted input
        logger.warning("request.too_deep", request=request.request)
        return ErrorResponse(error="Expression too deeply nested")

    raise TypeError(f"Unsupported request: {request!r}")


# ============================================================
# Streams
# ============================================================

def read_records(stream: IO[str]) -> Iterator[Union[Any, json.JSONDecodeError]]:
    """
    Decode whitespace-separated JSON values from a text stream.

    Decoding happens line by line, so a value is yielded as soon as the
    line that completes it has been read. A value may span several lines.
    A malformed value is yielded as its JSONDecodeError, and decoding
    resumes on the following line.
    """
    decoder = json.JSONDecoder()
    buffer = ""
    for line in stream:
        buffer += line
        while True:
            buffer = buffer.lstrip()
            if not buffer:
                break
            try:
                value, end = decoder.raw_decode(buffer)
            except json.JSONDecodeError as exc:
                if exc.pos >= len(buffer.rstrip()):
                    # value continues on a later line
                    break
                yield exc
                buffer = ""
                break
            yield value
            buffer = buffer[end:]

    if buffer.strip():
        try:
            decoder.raw_decode(buffer)
        except json.JSONDecodeError as exc:
            yield exc


def write_response(stream: IO[str], response: Response) -> None:
    stream.write(json.dumps(response.model_dump(), indent=2))
    stream.write("\n")
    stream.flush()


def serve(session: Session, instream: IO[str], outstream: IO[str]) -> int:
    """
    Answer requests from instream on outstream until end of input.

    If logging has not been configured yet it is set up with the stderr
    defaults of setup_logging, so that log lines never reach outstream.

    Returns:
        Number of responses written
    """
    if not structlog.is_configured():
        setup_logging()

    count = 0
    for record in read_records(instream):
        if isinstance(record, json.JSONDecodeError):
            response = deserialization_error(record)
        else:
            try:
                request = parse_request(record)
            except ValidationError as exc:
                response = deserialization_error(exc)
            else:
                response = handle_request(session, request)

        if isinstance(response, ErrorResponse):
            logger.debug("request.error_response", error=response.error)
        write_response(outstream, response)
        count += 1
    return count
