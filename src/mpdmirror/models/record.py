"""Types of parsed MPD response records."""

from collections.abc import Mapping
from datetime import datetime

RecordValue = int | float | datetime | str
Record = Mapping[str, RecordValue]
