"""EVE event decoding and timestamp handling."""

import json
import re
from datetime import datetime

# Suricata writes "2016-09-15T11:23:20.197956-0600"; other producers use "Z",
# "+00:00" or more than six fractional digits.
_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:?\d{2})$"
)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f%z"


class EveEvent(dict):
    """A decoded EVE record.

    Behaves as the plain JSON object (key order preserved) so it serializes
    with ``json.dumps`` unchanged. The parsed timestamp is kept as an
    attribute rather than a key so it never leaks into the wire form.
    """

    def __init__(self, *args, timestamp: datetime | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.timestamp = timestamp


def parse_timestamp(value: str) -> datetime:
    """Parse an EVE timestamp into a timezone-aware datetime.

    Raises ValueError if the value is not a recognizable EVE timestamp.
    """
    if not isinstance(value, str):
        raise ValueError(f"timestamp is not a string: {value!r}")
    m = _TIMESTAMP_RE.match(value)
    if m is None:
        raise ValueError(f"unrecognized timestamp: {value!r}")
    base, fraction, tz = m.groups()
    fraction = (fraction or "0")[:6].ljust(6, "0")
    tz = "+0000" if tz == "Z" else tz.replace(":", "")
    return datetime.strptime(f"{base}.{fraction}{tz}", TIMESTAMP_FORMAT)


def decode_event(line: bytes | str) -> EveEvent:
    """Decode one line of EVE JSON.

    An empty ``tags`` list is created when absent. Raises ValueError if the
    line is not a JSON object or its timestamp cannot be parsed.
    """
    try:
        data = json.loads(line)
    except RecursionError as err:
        raise ValueError("JSON nested too deeply") from err
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")

    event = EveEvent(data)
    if event.get("tags") is None:
        event["tags"] = []
    event.timestamp = parse_timestamp(event.get("timestamp"))
    return event
