from __future__ import annotations

import json
import os
from typing import Any

import pytest
import requests

from checker_config import Settings

SEARCH_URL = "https://search.test/states/CA.json"
NOTIFY_URL = "https://notify.test/v1"

# San Francisco
LATITUDE = 37.7749
LONGITUDE = -122.4194


def make_response(status_code: int = 200, body: Any = b"", reason: str = "OK") -> requests.Response:
    res = requests.Response()
    res.status_code = status_code
    res.reason = reason
    res.encoding = "utf-8"
    if isinstance(body, (bytes, str)):
        res._content = body.encode() if isinstance(body, str) else body
    else:
        res._content = json.dumps(body).encode()
    return res


def feature(
    site_id: Any,
    lat_offset: float,
    available: bool = True,
    second_dose_only: bool = False,
    **props: Any,
) -> dict[str, Any]:
    properties = {
        "id": site_id,
        "provider_brand_name": f"Pharmacy {site_id}",
        "address": "1 Main St",
        "city": "San Francisco",
        "state": "CA",
        "appointments_available": available,
        "appointments_available_2nd_dose_only": second_dose_only,
    }
    properties.update(props)
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [LONGITUDE, LATITUDE + lat_offset]},
        "properties": properties,
    }


def collection(*features: dict[str, Any]) -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": list(features)}


class StubSession(requests.Session):
    """Answers search and notification requests without touching the network.

    Each answer is a Response, an exception to raise, or a list of those
    consumed one per request.
    """

    def __init__(self, search: Any = None, notify: Any = None) -> None:
        super().__init__()
        self.search = search if search is not None else make_response(body=collection())
        self.notify = notify if notify is not None else make_response(body="ok")
        self.sent: list[requests.PreparedRequest] = []
        self.timeouts: list[Any] = []

    @property
    def notifications(self) -> list[requests.PreparedRequest]:
        return [req for req in self.sent if req.url.startswith(NOTIFY_URL)]

    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:  # type: ignore[override]
        self.sent.append(request)
        self.timeouts.append(kwargs.get("timeout"))
        answer = self.notify if request.url.startswith(NOTIFY_URL) else self.search
        if isinstance(answer, list):
            answer = answer.pop(0)
        if isinstance(answer, BaseException):
            raise answer
        return answer


@pytest.fixture
def settings() -> Settings:
    return Settings(
        latitude=LATITUDE,
        longitude=LONGITUDE,
        distance=10,
        search_url_pattern="https://search.test/states/%s.json",
        search_params=["CA"],
        notification_url=NOTIFY_URL,
        log_file="",
    )


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for key in list(os.environ):
        if key.startswith("VC_"):
            monkeypatch.delenv(key)
    # Keep ./config.json and ./.env lookups away from the repo
    monkeypatch.chdir(tmp_path)
