import json
import logging

from tiktok_cpm.apis.errors import NoMarkupFoundError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "

# Pull the HTML document out of the reader's event-stream response.
# The first "data:" line whose JSON payload carries an "html" field wins.
def extract_html_from_event_stream(stream_text: str) -> str:
    for line in (stream_text or "").split("\n"):
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            continue
        try:
            payload = json.loads(line[len(DATA_PREFIX):])
        except ValueError:
            # Partial or keep-alive chunks are not JSON
            continue
        if isinstance(payload, dict) and payload.get("html") and isinstance(payload["html"], str):
            logger.info(f"Found HTML payload in event stream, length: {len(payload['html'])}")
            return payload["html"]

    raise NoMarkupFoundError("No HTML content found in event-stream response")
