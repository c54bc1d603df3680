"""Content-Encoding negotiation and response compression."""

import gzip
import logging
import zlib
from typing import Iterable, Iterator, Optional

from static_server.domain.correlation_id import CorrelationLoggerAdapter
from static_server.domain.http_types import HttpRequest, HttpResponse

COMPRESSION_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("static_server.pipeline.compression"), {}
)

COMPRESSION_THRESHOLD = 1024
# Order breaks ties between equal q-values.
SUPPORTED_ENCODINGS = ("gzip", "deflate")
COMPRESSIBLE_TYPES = {
    "application/javascript",
    "application/json",
    "application/manifest+json",
    "application/xml",
    "application/xhtml+xml",
    "application/wasm",
    "image/svg+xml",
}
GZIP_WBITS = 16 + zlib.MAX_WBITS


def _quality(params: str) -> float:
    for param in params.split(";"):
        key, _, raw_value = param.strip().partition("=")
        if key.lower() == "q" and raw_value:
            try:
                return float(raw_value)
            except ValueError:
                return 0.0
    return 1.0


def negotiate_encoding(headers: dict[str, str]) -> Optional[str]:
    """Pick the preferred supported encoding from Accept-Encoding, if any."""
    qualities: dict[str, float] = {}
    wildcard: Optional[float] = None
    for token in headers.get("accept-encoding", "").split(","):
        value = token.strip()
        if not value:
            continue
        coding, _, params = value.partition(";")
        coding = coding.strip().lower()
        quality = _quality(params) if params else 1.0
        if coding == "*":
            wildcard = quality
        elif coding in SUPPORTED_ENCODINGS:
            qualities[coding] = quality

    best: Optional[str] = None
    best_quality = 0.0
    for coding in SUPPORTED_ENCODINGS:
        quality = qualities.get(coding, wildcard if wildcard is not None else 0.0)
        if quality > best_quality:
            best, best_quality = coding, quality
    return best


def is_compressible(content_type: str) -> bool:
    """True for text/* and the structured types in COMPRESSIBLE_TYPES."""
    mime_type = content_type.split(";", 1)[0].strip().lower()
    return mime_type.startswith("text/") or mime_type in COMPRESSIBLE_TYPES


def compress_bytes(payload: bytes, encoding: str) -> bytes:
    """Encode the payload with the negotiated content coding."""
    if encoding == "gzip":
        return gzip.compress(payload)
    return zlib.compress(payload)


def compress_stream(chunks: Iterable[bytes], encoding: str) -> Iterator[bytes]:
    """Compress a chunk iterator incrementally."""
    wbits = GZIP_WBITS if encoding == "gzip" else zlib.MAX_WBITS
    compressor = zlib.compressobj(wbits=wbits)
    for chunk in chunks:
        data = compressor.compress(chunk)
        if data:
            yield data
    yield compressor.flush()


def _payload_size(response: HttpResponse) -> Optional[int]:
    if response.body_iter is not None:
        return response.content_length
    return len(response.body)


def apply_compression(request: HttpRequest, response: HttpResponse) -> HttpResponse:
    """Compress a successful response in place when the client accepts it.

    Only 200 responses with a compressible Content-Type of at least
    COMPRESSION_THRESHOLD bytes are encoded; ``Vary: Accept-Encoding`` is
    added for every compressible response so caches keep variants apart.
    """
    content_type = response.headers.get("Content-Type", "")
    if response.status != 200 or not is_compressible(content_type):
        return response
    if "Content-Encoding" in response.headers:
        return response
    if "no-transform" in response.headers.get("Cache-Control", "").lower():
        return response

    vary = response.headers.get("Vary")
    if not vary:
        response.headers["Vary"] = "Accept-Encoding"
    elif "accept-encoding" not in vary.lower():
        response.headers["Vary"] = f"{vary}, Accept-Encoding"

    size = _payload_size(response)
    if request.method == "HEAD" or size is None or size < COMPRESSION_THRESHOLD:
        return response
    encoding = negotiate_encoding(request.headers)
    if encoding is None:
        return response

    response.headers["Content-Encoding"] = encoding
    if response.body_iter is not None:
        response.body_iter = compress_stream(response.body_iter, encoding)
        response.content_length = None
    else:
        response.body = compress_bytes(response.body, encoding)
    if COMPRESSION_LOGGER.logger.isEnabledFor(logging.DEBUG):
        COMPRESSION_LOGGER.debug(
            "Compressed response",
            extra={"event": "response_compressed", "encoding": encoding, "bytes_out": size},
        )
    return response
