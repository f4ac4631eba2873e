"""
In-process result store for detail views.

A finished analysis publishes its payload under a generated data_id; a
consumer asks for it with a DataRequest and receives a DataResponse carrying
the same data_id and requester_id (payload None when the id is unknown).
"""

import json
import logging
import random
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class DataRequest:
    data_id: str
    requester_id: str


@dataclass(frozen=True)
class DataResponse:
    data_id: str
    requester_id: str
    payload: Optional[Any]


Subscriber = Callable[[str, Any], None]


def make_data_id(section: str, prefix: str = "tool1") -> str:
    """e.g. tool1-common-1718000000000-k3x9a"""
    millis = int(time.time() * 1000)
    suffix = "".join(random.choices(_ID_ALPHABET, k=5))
    return f"{prefix}-{section}-{millis}-{suffix}"


class ResultStore:
    def __init__(self, prefix: str = "tool1"):
        self.prefix = prefix
        self._payloads: dict[str, Any] = {}
        self._subscribers: list[Subscriber] = []

    def publish(self, section: str, payload: Any) -> str:
        data_id = make_data_id(section, self.prefix)
        self._payloads[data_id] = payload
        logger.debug("Published %s", data_id)
        for callback in list(self._subscribers):
            callback(data_id, payload)
        return data_id

    def get(self, data_id: str) -> Optional[Any]:
        return self._payloads.get(data_id)

    def handle_request(self, request: DataRequest) -> DataResponse:
        payload = self._payloads.get(request.data_id)
        if payload is None:
            logger.warning("No payload for %s (requested by %s)", request.data_id, request.requester_id)
        return DataResponse(request.data_id, request.requester_id, payload)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a publish listener; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def write_json(self, path: Path, requester_id: str = "export") -> Path:
        """
        Write every published payload, keyed by data_id, so the ids logged
        during a run can be resolved after the process exits.
        """
        sections = {}
        for data_id in self._payloads:
            response = self.handle_request(DataRequest(data_id, requester_id))
            sections[response.data_id] = response.payload

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(
                {"generated_at": datetime.now(timezone.utc).isoformat(), "sections": sections},
                f, indent=2, ensure_ascii=False,
            )
        logger.info("Result store written to %s (%d sections)", path, len(sections))
        return path

    def clear(self) -> None:
        self._payloads.clear()

    def __len__(self) -> int:
        return len(self._payloads)

    def __contains__(self, data_id: str) -> bool:
        return data_id in self._payloads
