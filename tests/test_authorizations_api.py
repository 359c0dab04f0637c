"""HTTP surface of the authorizations router — lists, stats and the alert feed."""

import uuid
from datetime import datetime, timedelta, timezone

from careshift.authorizations.models import AuthorizationAlert
from careshift.common.constants import (
    AlertSeverity,
    AlertType,
    AuthorizationStatus,
    UserRole,
)
from tests.conftest import (
    COMPANY_ID,
    OTHER_COMPANY_ID,
    auth_headers,
    make_authorization,
    make_client,
    make_user,
    seed,
)

BASE = "/api/v1/authorizations"


def _today():
    return datetime.now(timezone.utc).date()


def _alert(auth, *, alert_type=AlertType.low_units, severity=AlertSeverity.warning, **kw):
    return AuthorizationAlert(
        id=uuid.uuid4(),
        company_id=kw.get("company_id", COMPANY_ID),
        authorization_id=auth.id,
        alert_type=alert_type,
        severity=severity,
        message=f"{alert_type.value} for {auth.auth_number}",
        is_dismissed=kw.get("is_dismissed", False),
    )


async def test_list_with_stats(client, supervisor, care_client):
    today = _today()
    low = make_authorization(care_client.id, authorized_units=40, used_units=35, auth_number="A-LOW")
    ending = make_authorization(
        care_client.id, end_date=today + timedelta(days=10), auth_number="A-END",
    )
    exhausted = make_authorization(
        care_client.id, authorized_units=20, used_units=20,
        status=AuthorizationStatus.exhausted, auth_number="A-EXH",
    )
    lapsed = make_authorization(
        care_client.id, end_date=today - timedelta(days=3),
        status=AuthorizationStatus.expired, auth_number="A-EXP",
    )
    await seed(low, ending, exhausted, lapsed)

    resp = await client.get(BASE, headers=auth_headers(supervisor))
    assert resp.status_code == 200
    body = resp.json()

    assert body["meta"]["total"] == 4
    assert body["data"][0]["auth_number"] == "A-EXP"
    assert body["stats"] == {
        "total": 4,
        "active": 2,
        "exhausted": 1,
        "expired": 1,
        "low_units": 1,
        "expiring_soon": 1,
    }

    by_number = {a["auth_number"]: a for a in body["data"]}
    assert by_number["A-LOW"]["usage_percentage"] == 87.5
    assert by_number["A-LOW"]["is_nearing_limit"] is True
    assert by_number["A-END"]["is_expiring_soon"] is True
    assert by_number["A-END"]["days_remaining"] == 10
    assert by_number["A-EXP"]["days_remaining"] == 0


async def test_list_filters(client, supervisor, care_client):
    other_client = await seed(make_client())
    mine = make_authorization(care_client.id, end_date=_today() + timedelta(days=5))
    theirs = make_authorization(other_client.id)
    await seed(mine, theirs)

    by_client = await client.get(
        BASE, params={"client_id": str(care_client.id)}, headers=auth_headers(supervisor),
    )
    assert [a["id"] for a in by_client.json()["data"]] == [str(mine.id)]

    soon = await client.get(
        BASE, params={"expiring_soon": "true"}, headers=auth_headers(supervisor),
    )
    assert [a["id"] for a in soon.json()["data"]] == [str(mine.id)]


async def test_list_is_tenant_scoped(client, supervisor):
    foreign_client = await seed(make_client(company_id=OTHER_COMPANY_ID))
    await seed(make_authorization(foreign_client.id, company_id=OTHER_COMPANY_ID))

    resp = await client.get(BASE, headers=auth_headers(supervisor))
    assert resp.json()["meta"]["total"] == 0
    assert resp.json()["stats"]["total"] == 0


async def test_carer_cannot_read_authorizations(client, carer):
    resp = await client.get(BASE, headers=auth_headers(carer))
    assert resp.status_code == 403


async def test_get_authorization(client, supervisor, care_client):
    auth = await seed(make_authorization(care_client.id, authorized_units=10, used_units=2.5))

    resp = await client.get(f"{BASE}/{auth.id}", headers=auth_headers(supervisor))
    assert resp.status_code == 200
    body = resp.json()
    assert body["remaining_units"] == 7.5
    assert body["usage_percentage"] == 25.0
    assert body["unit_type"] == "HOURLY"

    missing = await client.get(f"{BASE}/{uuid.uuid4()}", headers=auth_headers(supervisor))
    assert missing.status_code == 404


async def test_alert_feed_and_summary(client, supervisor, care_client):
    auth = await seed(make_authorization(care_client.id, auth_number="A-100"))
    await seed(
        _alert(auth),
        _alert(auth, alert_type=AlertType.expiring_soon, severity=AlertSeverity.critical),
        _alert(auth, alert_type=AlertType.units_exhausted, severity=AlertSeverity.critical,
               is_dismissed=True),
    )

    resp = await client.get(f"{BASE}/alerts", headers=auth_headers(supervisor))
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["data"]) == 2
    assert {a["auth_number"] for a in body["data"]} == {"A-100"}
    assert body["summary"] == {"total": 2, "critical": 1, "warning": 1}

    everything = await client.get(
        f"{BASE}/alerts", params={"include_dismissed": "true"}, headers=auth_headers(supervisor),
    )
    assert len(everything.json()["data"]) == 3


async def test_dismiss_alert(client, supervisor, care_client):
    staff = await seed(make_user(role=UserRole.staff))
    auth = await seed(make_authorization(care_client.id))
    alert = await seed(_alert(auth))

    denied = await client.post(
        f"{BASE}/alerts/{alert.id}/dismiss", headers=auth_headers(staff),
    )
    assert denied.status_code == 403

    resp = await client.post(
        f"{BASE}/alerts/{alert.id}/dismiss", headers=auth_headers(supervisor),
    )
    assert resp.status_code == 200
    assert resp.json()["is_dismissed"] is True
    assert resp.json()["dismissed_at"] is not None

    again = await client.post(
        f"{BASE}/alerts/{alert.id}/dismiss", headers=auth_headers(supervisor),
    )
    assert again.status_code == 409


async def test_evaluate_expirations_endpoint(client, supervisor, care_client):
    today = _today()
    lapsed = make_authorization(
        care_client.id,
        start_date=today - timedelta(days=60),
        end_date=today - timedelta(days=1),
    )
    ending = make_authorization(care_client.id, end_date=today + timedelta(days=5))
    healthy = make_authorization(care_client.id, end_date=today + timedelta(days=120))
    await seed(lapsed, ending, healthy)

    resp = await client.post(f"{BASE}/alerts/evaluate", headers=auth_headers(supervisor))
    assert resp.status_code == 200
    assert resp.json() == {"expired": [str(lapsed.id)], "alerts_raised": 1}

    feed = await client.get(f"{BASE}/alerts", headers=auth_headers(supervisor))
    alerts = feed.json()["data"]
    assert [a["authorization_id"] for a in alerts] == [str(ending.id)]
    assert alerts[0]["severity"] == "CRITICAL"

    rerun = await client.post(f"{BASE}/alerts/evaluate", headers=auth_headers(supervisor))
    assert rerun.json() == {"expired": [], "alerts_raised": 0}


async def test_evaluate_requires_manager(client):
    staff = await seed(make_user(role=UserRole.staff))
    resp = await client.post(f"{BASE}/alerts/evaluate", headers=auth_headers(staff))
    assert resp.status_code == 403
