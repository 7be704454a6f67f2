# cache/serializers.py
"""Serialization for records kept in the key-value store."""

import json
from typing import Any, Dict


class JSONSerializer:
    """JSON serializer for store values.

    Keys are sorted so that equal records always produce identical strings,
    which compare-and-set relies on.
    """

    def serialize(self, data: Dict[str, Any]) -> str:
        return json.dumps(data, default=str, sort_keys=True, separators=(",", ":"))

    def deserialize(self, data: str) -> Dict[str, Any]:
        return json.loads(data)


json_serializer = JSONSerializer()
