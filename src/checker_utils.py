"""
checker_utils.py

Queries the vaccine spotter API for appointment sites, keeps the ones near
the configured location that have appointments available and hits the
notification URL when sites show up that weren't there on the last check.
"""


from typing import Any, Dict, List, Optional, Sequence

import asyncio
import functools
import math
import requests
import signal
import traceback
from datetime import datetime, timezone
from email.utils import format_datetime
from checker_config import Settings
from checker_constants import BODY_METHODS, EARTH_RADIUS_METERS
from checker_errors import FetchError, NotifyError
from checker_logger import getCheckerLogger
from checker_types import (
    Appointment,
    CheckResult,
    FilterResult,
    Location,
    Site,
)


logger = getCheckerLogger(__name__)


def pretty_fmt_req(req) -> str:
    if req.headers.items():
        return ('{}\r\n{}'.format(
            req.method + ' ' + req.url,
            '\r\n'.join('{}: {}'.format(k, v) for k, v in req.headers.items()),
        ))
    else:
        return ('{}'.format(
            req.method + ' ' + req.url,
        ))


def fmt_now() -> str:
    return format_datetime(datetime.now(timezone.utc), usegmt=True)


def create_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({"Accept": "application/json"})
    return session


async def send_request(
    method: str,
    url: str,
    timeout: float,
    data: Optional[str] = None,
    headers: Optional[Dict] = None,
    session: Optional[requests.Session] = None,
) -> requests.Response:
    if not session:
        session = create_session()

    prepared = session.prepare_request(
        requests.Request(method, url, data=data, headers=headers))
    logger.debug(f"Sending request: {pretty_fmt_req(prepared)}")

    # requests blocks, so run it off the loop. The caller still awaits it,
    # only one request is ever in flight.
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None, functools.partial(session.send, prepared, timeout=timeout)
    )


def search_url(settings: Settings) -> str:
    return settings.search_url_pattern % tuple(settings.search_params)


def notification_url(settings: Settings) -> str:
    url = settings.notification_url
    if settings.notification_params and \
            settings.notification_method not in BODY_METHODS:
        url += "?" + "&".join(settings.notification_params)
    return url


# Params go in the body for POST and friends, otherwise in the query string
def notification_body(settings: Settings) -> Optional[str]:
    if settings.notification_params and \
            settings.notification_method in BODY_METHODS:
        return "&".join(settings.notification_params)
    return None


def _must_bool(props: Dict[str, Any], key: str) -> bool:
    value = props.get(key, False)
    return value if isinstance(value, bool) else False


def _must_str(props: Dict[str, Any], key: str) -> Optional[str]:
    value = props.get(key)
    return value if isinstance(value, str) else None


def _site_id(feature: Dict[str, Any], props: Dict[str, Any]) -> Optional[int]:
    value = props.get("id", feature.get("id"))
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _point(geometry: Any) -> Optional[Location]:
    if not isinstance(geometry, dict) or geometry.get("type") != "Point":
        return None
    coordinates = geometry.get("coordinates")
    if not isinstance(coordinates, (list, tuple)) or len(coordinates) < 2:
        return None
    lon, lat = coordinates[0], coordinates[1]
    if isinstance(lon, bool) or isinstance(lat, bool) or \
            not isinstance(lon, (int, float)) or not isinstance(lat, (int, float)):
        return None
    # json happily decodes NaN and 1e400
    if not math.isfinite(lon) or not math.isfinite(lat):
        return None
    return Location(longitude=float(lon), latitude=float(lat))


def parse_site(feature: Any) -> Site:
    if not isinstance(feature, dict):
        return Site(id=None, location=None)
    props = feature.get("properties")
    if not isinstance(props, dict):
        props = {}

    appointments = []
    raw_appointments = props.get("appointments")
    if isinstance(raw_appointments, list):
        for appt in raw_appointments:
            if isinstance(appt, dict):
                appointments.append(
                    Appointment(time=appt.get("time"), type=appt.get("type")))

    return Site(
        id=_site_id(feature, props),
        location=_point(feature.get("geometry")),
        appointments_available=_must_bool(props, "appointments_available"),
        second_dose_only=_must_bool(
            props, "appointments_available_2nd_dose_only"),
        name=_must_str(props, "provider_brand_name"),
        address=_must_str(props, "address"),
        city=_must_str(props, "city"),
        state=_must_str(props, "state"),
        appointments=tuple(appointments),
    )


def parse_feature_collection(data: Any) -> List[Site]:
    if not isinstance(data, dict) or not isinstance(data.get("features"), list):
        raise FetchError("search response is not a feature collection")
    return [parse_site(feature) for feature in data["features"]]


# Haversine distance in meters between two points
def distance_meters(a: Location, b: Location) -> float:
    lat1, lat2 = math.radians(a.latitude), math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + \
        math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(min(1.0, h)))


def filter_sites(
    sites: Sequence[Site],
    location: Location,
    distance: float,
    include_second_dose_only: bool,
) -> FilterResult:
    available = 0
    found: List[Site] = []
    for site in sites:
        if not site.appointments_available:
            continue
        if not include_second_dose_only and site.second_dose_only:
            continue
        available += 1

        if site.location is None:
            logger.debug(f"Site {site.id} has no point geometry, skipping")
            continue
        if distance_meters(site.location, location) <= distance:
            found.append(site)

    return FilterResult(found=tuple(found), available=available, total=len(sites))


def diff_new(found: Sequence[Site], previous: Sequence[Site]) -> List[Site]:
    seen = {site.id for site in previous if site.id is not None}
    # No id means we can't tell, err on the side of reporting
    return [site for site in found if site.id is None or site.id not in seen]


def fmt_site(site: Site, location: Location) -> str:
    km = distance_meters(site.location, location) / 1000.0
    lines = ["{} - {}, {}, {} - {:.2f} km".format(
        site.name or "(unknown name)",
        site.address or "(unknown address)",
        site.city or "(unknown city)",
        site.state or "(unknown state)",
        km,
    )]
    for appt in site.appointments:
        lines.append("  {}: {}".format(
            appt.time if appt.time is not None else "(unknown time)",
            appt.type if appt.type is not None else "(unknown type)",
        ))
    return "\n".join(lines)


class Checker:
    """
    One check is fetch -> filter -> diff against the last check -> notify.

    The sites found on the last check are the only state. They are replaced
    after every check that got a search response, even when the notification
    fails, so a failed notification is not retried on the next check.
    """

    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings
        self.location = settings.location
        self.distance = settings.distance_meters
        self.session = session or create_session()
        self._last_found: tuple = ()

    @property
    def last_found(self) -> tuple:
        return self._last_found

    async def fetch(self) -> List[Site]:
        settings = self.settings
        try:
            res = await send_request(
                settings.search_method,
                search_url(settings),
                timeout=settings.search_timeout,
                session=self.session,
            )
        except requests.RequestException as e:
            raise FetchError(f"error fetching appointments: {e}") from e

        if not res.ok:
            raise FetchError(
                f"error fetching appointments: {res.status_code} {res.reason}")

        try:
            data = res.json()
        except ValueError as e:
            raise FetchError(f"error decoding appointments: {e}") from e
        return parse_feature_collection(data)

    async def notify(self, sites: Sequence[Site]) -> bool:
        settings = self.settings
        if settings.silent:
            logger.debug(f"Silent, skipping notification for {len(sites)} sites")
            return False

        body = notification_body(settings)
        headers = None
        if body is not None:
            headers = {"Content-Type": "application/x-www-form-urlencoded"}

        logger.info(f"notifying at {fmt_now()}")
        try:
            res = await send_request(
                settings.notification_method,
                notification_url(settings),
                timeout=settings.notification_timeout,
                data=body,
                headers=headers,
                session=self.session,
            )
        except requests.RequestException as e:
            raise NotifyError(f"error notifying: {e}") from e

        if res.status_code != 200:
            raise NotifyError(
                f"unexpected status returned: {res.status_code} {res.reason}",
                status_code=res.status_code,
            )

        if res.text:
            logger.info(res.text)
        return True

    async def check(self) -> CheckResult:
        logger.info(f"*** Checking at {fmt_now()} ***")
        sites = await self.fetch()

        filtered = filter_sites(
            sites,
            self.location,
            self.distance,
            self.settings.include_second_dose_only,
        )
        for site in filtered.found:
            logger.info(fmt_site(site, self.location))
        logger.info(
            f"found {len(filtered.found)} nearby, out of {filtered.available} "
            f"available from {filtered.total} locations."
        )

        result = CheckResult(
            filtered=filtered,
            new_sites=diff_new(filtered.found, self._last_found),
        )
        try:
            if result.new_sites:
                result.notified = await self.notify(result.new_sites)
        except NotifyError as e:
            logger.error(f"error notifying, moving on: {e}")
        finally:
            self._last_found = filtered.found

        return result


# Waits out the interval, returns True if we were told to stop meanwhile
async def wait_for_stop(stop_event: asyncio.Event, timeout: float) -> bool:
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False


def _add_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
) -> List[int]:
    added = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            added.append(sig)
        except (NotImplementedError, RuntimeError) as e:
            logger.warning(f"Unable to handle {sig!r} ({e}), relying on KeyboardInterrupt")
    return added


async def run_checker(
    settings: Settings,
    checker: Optional[Checker] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    if checker is None:
        checker = Checker(settings)
    if stop_event is None:
        stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    handled = _add_signal_handlers(loop, stop_event)
    last_tick = loop.time()

    # Check right away, then every check_interval until stopped
    try:
        while not stop_event.is_set():
            try:
                await checker.check()
            except FetchError as e:
                logger.debug(
                    "".join(traceback.format_exception(None, e, e.__traceback__))
                )
                logger.error(f"error checking sites, moving on: {e}")

            if await wait_for_stop(stop_event, settings.check_interval):
                break

            if loop.time() - last_tick >= settings.tick_interval:
                logger.info("tick")
                last_tick = loop.time()
    finally:
        logger.info("terminating...")
        for sig in handled:
            loop.remove_signal_handler(sig)
    logger.info("done.")
