"""Read scrape payloads from files and HTTP responses with a size ceiling."""
from dataclasses import dataclass
from typing import BinaryIO, Optional
import gzip
import logging
import time
import zlib

import requests
import urllib3

from promscrape.errors import SizeLimitExceeded, UpstreamError

logger = logging.getLogger(__name__)

# Scraping a file implies the metrics are in text format.
FILE_CONTENT_TYPE = "text/plain"
CHUNK_SIZE = 64 * 1024


@dataclass
class Payload:
    """Raw scrape bytes and the content type they were declared with."""
    content_type: str
    body: bytes


def read_limited(
    reader: BinaryIO,
    limit: int,
    source: str,
    deadline: Optional[float] = None
) -> bytes:
    """
    Read from reader until EOF, never buffering more than limit bytes.

    A payload of limit bytes or more raises SizeLimitExceeded. deadline is
    a time.monotonic() value after which the read fails with UpstreamError.
    """
    body = bytearray()
    while len(body) < limit:
        chunk = reader.read(min(CHUNK_SIZE, limit - len(body)))
        if not chunk:
            break
        body.extend(chunk)
        if deadline is not None and time.monotonic() > deadline:
            raise UpstreamError(f"timed out reading {source} body")

    if len(body) >= limit:
        logger.warning(f"{source} body size limit exceeded (limit_bytes={limit})")
        raise SizeLimitExceeded(source, limit)

    return bytes(body)


def read_file(path: str, limit: int) -> Payload:
    """Read a metrics file saved from an earlier scrape."""
    try:
        with open(path, "rb") as f:
            body = read_limited(f, limit, "metric file")
    except OSError as e:
        raise UpstreamError(f"failed reading file {path} to scrape metrics: {e}") from e

    logger.debug(f"Read {len(body)} bytes from {path}")
    return Payload(FILE_CONTENT_TYPE, body)


def read_response(
    resp: requests.Response,
    limit: int,
    deadline: Optional[float] = None
) -> Payload:
    """
    Read a streamed HTTP response body.

    The response must have been requested with stream=True. Gzip bodies are
    decompressed before the limit applies. The response is closed on every
    exit path.
    """
    try:
        if not 200 <= resp.status_code < 300:
            raise UpstreamError(
                f"server returned HTTP status {resp.status_code} {resp.reason}",
                status_code=resp.status_code,
            )

        reader: BinaryIO = resp.raw
        gzip_reader = None
        if resp.headers.get("Content-Encoding", "").lower() == "gzip":
            gzip_reader = gzip.GzipFile(fileobj=resp.raw, mode="rb")
            reader = gzip_reader

        try:
            body = read_limited(reader, limit, "response", deadline)
        except (OSError, EOFError, zlib.error, urllib3.exceptions.HTTPError) as e:
            raise UpstreamError(f"failed reading response body from {resp.url}: {e}") from e
        finally:
            if gzip_reader is not None:
                gzip_reader.close()
    finally:
        resp.close()

    return Payload(resp.headers.get("Content-Type", ""), body)
