from __future__ import annotations

import logging

import pytest
import requests

from checker_errors import FetchError, NotifyError
from checker_utils import Checker, notification_body, notification_url, search_url
from conftest import NOTIFY_URL, SEARCH_URL, StubSession, collection, feature, make_response


def _scenario() -> requests.Response:
    return make_response(
        body=collection(
            feature(1, 0.02),
            feature(2, 0.45),
            feature(3, 0.005, available=False),
        )
    )


@pytest.mark.asyncio
async def test_check_finds_nearby_sites_and_notifies(settings, caplog) -> None:
    caplog.set_level(logging.INFO)
    session = StubSession(search=_scenario())
    checker = Checker(settings, session=session)

    result = await checker.check()

    assert [site.id for site in result.filtered.found] == [1]
    assert result.filtered.available == 2
    assert result.filtered.total == 3
    assert [site.id for site in result.new_sites] == [1]
    assert result.notified is True
    assert [req.url for req in session.sent] == [SEARCH_URL, NOTIFY_URL]
    assert session.timeouts == [settings.search_timeout, settings.notification_timeout]
    assert "found 1 nearby, out of 2 available from 3 locations." in caplog.text
    assert "Pharmacy 1 - 1 Main St, San Francisco, CA - 2.23 km" in caplog.text


@pytest.mark.asyncio
async def test_same_sites_on_second_check_do_not_notify(settings) -> None:
    session = StubSession(search=[_scenario(), _scenario()])
    checker = Checker(settings, session=session)

    await checker.check()
    second = await checker.check()

    assert second.new_sites == []
    assert second.notified is False
    assert len(session.notifications) == 1


@pytest.mark.asyncio
async def test_only_new_sites_trigger_second_notification(settings) -> None:
    session = StubSession(
        search=[
            make_response(body=collection(feature(1, 0.01))),
            make_response(body=collection(feature(1, 0.01), feature(2, 0.02))),
        ]
    )
    checker = Checker(settings, session=session)

    await checker.check()
    second = await checker.check()

    assert [site.id for site in second.new_sites] == [2]
    assert len(session.notifications) == 2


@pytest.mark.asyncio
async def test_site_that_disappears_and_returns_is_new_again(settings) -> None:
    session = StubSession(
        search=[
            make_response(body=collection(feature(1, 0.01))),
            make_response(body=collection()),
            make_response(body=collection(feature(1, 0.01))),
        ]
    )
    checker = Checker(settings, session=session)

    await checker.check()
    await checker.check()
    third = await checker.check()

    assert [site.id for site in third.new_sites] == [1]
    assert len(session.notifications) == 2


@pytest.mark.asyncio
async def test_sites_without_ids_notify_every_check(settings) -> None:
    session = StubSession(
        search=[
            make_response(body=collection(feature(None, 0.01))),
            make_response(body=collection(feature(None, 0.01))),
        ]
    )
    checker = Checker(settings, session=session)

    await checker.check()
    second = await checker.check()

    assert len(second.new_sites) == 1
    assert len(session.notifications) == 2


@pytest.mark.asyncio
async def test_silent_never_calls_notification_url(settings) -> None:
    settings = settings.model_copy(update={"silent": True})
    session = StubSession(search=_scenario())
    checker = Checker(settings, session=session)

    result = await checker.check()

    assert [site.id for site in result.new_sites] == [1]
    assert result.notified is False
    assert session.notifications == []
    assert checker.last_found == result.filtered.found


@pytest.mark.asyncio
async def test_notification_500_is_logged_and_state_still_updates(settings, caplog) -> None:
    session = StubSession(
        search=[_scenario(), _scenario()],
        notify=make_response(status_code=500, body="boom", reason="Internal Server Error"),
    )
    checker = Checker(settings, session=session)

    result = await checker.check()

    assert result.notified is False
    assert checker.last_found == result.filtered.found
    assert "unexpected status returned: 500" in caplog.text

    # The failed sites are the baseline now, nothing is retried
    second = await checker.check()
    assert second.new_sites == []
    assert len(session.notifications) == 1


@pytest.mark.asyncio
async def test_notification_timeout_is_not_fatal(settings, caplog) -> None:
    session = StubSession(search=_scenario(), notify=requests.Timeout("too slow"))
    checker = Checker(settings, session=session)

    result = await checker.check()

    assert result.notified is False
    assert checker.last_found == result.filtered.found
    assert "error notifying" in caplog.text


@pytest.mark.asyncio
async def test_notify_raises_with_status(settings) -> None:
    session = StubSession(notify=make_response(status_code=204, reason="No Content"))
    checker = Checker(settings, session=session)

    with pytest.raises(NotifyError) as excinfo:
        await checker.notify(["site"])

    assert excinfo.value.status_code == 204


@pytest.mark.asyncio
async def test_notification_response_body_is_logged(settings, caplog) -> None:
    caplog.set_level(logging.INFO)
    session = StubSession(notify=make_response(body="button pressed"))
    checker = Checker(settings, session=session)

    assert await checker.notify(["site"]) is True
    assert "button pressed" in caplog.text


@pytest.mark.asyncio
async def test_fetch_transport_error_leaves_state_alone(settings) -> None:
    session = StubSession(
        search=[_scenario(), requests.ConnectionError("refused")],
    )
    checker = Checker(settings, session=session)
    first = await checker.check()

    with pytest.raises(FetchError):
        await checker.check()

    assert checker.last_found == first.filtered.found
    assert len(session.notifications) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        make_response(body="<html>not json</html>"),
        make_response(body={"features": "nope"}),
        make_response(status_code=503, body={"features": []}, reason="Service Unavailable"),
    ],
)
async def test_fetch_rejects_bad_responses(settings, response) -> None:
    checker = Checker(settings, session=StubSession(search=response))

    with pytest.raises(FetchError):
        await checker.fetch()


def test_search_url_substitutes_params(settings) -> None:
    assert search_url(settings) == SEARCH_URL


def test_get_notification_params_go_in_query(settings) -> None:
    settings = settings.model_copy(update={"notification_params": ["key=abc", "button=1"]})

    assert notification_url(settings) == NOTIFY_URL + "?key=abc&button=1"
    assert notification_body(settings) is None


def test_post_notification_params_go_in_body(settings) -> None:
    settings = settings.model_copy(
        update={"notification_method": "POST", "notification_params": ["key=abc", "button=1"]}
    )

    assert notification_url(settings) == NOTIFY_URL
    assert notification_body(settings) == "key=abc&button=1"


@pytest.mark.asyncio
async def test_post_notification_sends_form_body(settings) -> None:
    settings = settings.model_copy(
        update={"notification_method": "POST", "notification_params": ["key=abc"]}
    )
    session = StubSession()
    checker = Checker(settings, session=session)

    await checker.notify(["site"])

    request = session.notifications[0]
    assert request.method == "POST"
    assert request.body == "key=abc"
    assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"


@pytest.mark.asyncio
async def test_overflowing_coordinates_in_feed_do_not_break_check(settings) -> None:
    body = (
        '{"type": "FeatureCollection", "features": ['
        '{"type": "Feature", "geometry": {"type": "Point", "coordinates": [1e400, 37.0]},'
        ' "properties": {"id": 9, "appointments_available": true}},'
        '{"type": "Feature", "geometry": {"type": "Point", "coordinates": [NaN, 37.0]},'
        ' "properties": {"id": 10, "appointments_available": true}}]}'
    )
    session = StubSession(search=make_response(body=body))
    checker = Checker(settings, session=session)

    result = await checker.check()

    assert result.filtered.found == ()
    assert result.filtered.available == 2
    assert result.filtered.total == 2
