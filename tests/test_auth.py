from datetime import date

import pytest

from auth import AuthError, approve_consent, bootstrap_session, list_consent_logs, login, logout, signup
from auth.accounts import hash_password, verify_password
from auth.helpers import calculate_age, format_phone_for_display, is_email, is_phone, normalize_phone
from auth.session import AuthEvents

ADULT_DOB = "1990-05-17"
MINOR_DOB = f"{date.today().year - 12}-01-01"


def test_password_hash_round_trip():
    encoded = hash_password("s3cret", iterations=1000)

    assert encoded.startswith("pbkdf2_sha256$1000$")
    assert verify_password("s3cret", encoded)
    assert not verify_password("wrong", encoded)
    assert not verify_password("s3cret", "plain-text")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("(858) 555-0123", "+18585550123"),
        ("1-858-555-0123", "+18585550123"),
        ("+44 20 7946 0958", "+442079460958"),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_contact_helpers():
    assert is_email(" parent@example.com ")
    assert not is_email("parent@example")
    assert is_phone("858.555.0123")
    assert not is_phone("555-0123")
    assert format_phone_for_display("+18585550123") == "(858) 555-0123"


def test_age_counts_birthday():
    assert calculate_age(date(2010, 10, 20), today=date(2026, 10, 19)) == 15
    assert calculate_age(date(2010, 10, 19), today=date(2026, 10, 19)) == 16


async def test_adult_signup_and_login(storefront_db):
    result = await signup("Abri", " Abri@Example.com ", "s3cret", ADULT_DOB)

    assert not result.consent_required
    assert result.consent_log.channel == "self"
    assert "consentToken" not in result.to_dict()
    assert "passwordHash" not in result.to_dict()["user"]

    user, session = await login("abri@example.com", "s3cret")
    assert user.id == result.user.id
    assert (await storefront_db.get_session(session.token)).user_id == user.id

    await logout(session.token)
    assert await storefront_db.get_session(session.token) is None


async def test_signup_validation(storefront_db):
    with pytest.raises(AuthError):
        await signup("Abri", "abri@example.com", "", ADULT_DOB)
    with pytest.raises(AuthError):
        await signup("Abri", "abri@example.com", "s3cret", "17/05/1990")

    await signup("Abri", "abri@example.com", "s3cret", ADULT_DOB)
    with pytest.raises(AuthError) as exc_info:
        await signup("Other", "ABRI@example.com", "pw", ADULT_DOB)
    assert exc_info.value.status_code == 409


async def test_minor_needs_parent_contact(storefront_db):
    with pytest.raises(AuthError) as exc_info:
        await signup("Kid", "kid@example.com", "pw", MINOR_DOB)
    assert "Parent" in str(exc_info.value)


async def test_minor_consent_flow(storefront_db):
    result = await signup("Kid", "kid@example.com", "pw", MINOR_DOB, parent_phone="(858) 555-0123")

    assert result.consent_required
    assert result.consent_log.channel == "sms"
    assert result.user.parent_phone == "+18585550123"
    assert result.consent_token

    with pytest.raises(AuthError) as exc_info:
        await login("kid@example.com", "pw")
    assert exc_info.value.status_code == 403
    assert exc_info.value.user.id == result.user.id

    user, log = await approve_consent(result.consent_token, "  Parent Name ")
    assert not user.pending_consent
    assert user.consent_approver == "Parent Name"
    assert log.status == "approved"

    await login("kid@example.com", "pw")

    with pytest.raises(AuthError) as exc_info:
        await approve_consent(result.consent_token, "Parent Name")
    assert exc_info.value.status_code == 404


async def test_unknown_consent_token(storefront_db):
    with pytest.raises(AuthError) as exc_info:
        await approve_consent("does-not-exist")
    assert exc_info.value.status_code == 404

    with pytest.raises(AuthError):
        await approve_consent("")


async def test_consent_logs_hide_tokens(storefront_db):
    result = await signup("Kid", "kid@example.com", "pw", MINOR_DOB, parent_email="Parent@Example.com")

    logs = await list_consent_logs(result.user.id)

    assert len(logs) == 1
    assert logs[0]["channel"] == "email"
    assert logs[0]["contact"] == "parent@example.com"
    assert "token" not in logs[0]


async def test_wrong_password_is_unauthorized(storefront_db):
    await signup("Abri", "abri@example.com", "s3cret", ADULT_DOB)

    with pytest.raises(AuthError) as exc_info:
        await login("abri@example.com", "nope")
    assert exc_info.value.status_code == 401


async def test_bootstrap_session_resolves_policy_then_subscribes(storefront_db):
    await signup("Owner", "owner@example.com", "pw", ADULT_DOB)
    _, session = await login("owner@example.com", "pw")
    events = AuthEvents()
    received = []

    async def listener(event, context):
        received.append((event, context.policy.is_admin))

    context = await bootstrap_session(
        session.token, admin_emails={"OWNER@example.com"}, listener=listener, events=events
    )

    assert context.policy.is_admin
    assert context.policy.source == "allowlist"
    assert received == [("session_restored", True)]

    context.unsubscribe()
    await events.emit("signed_out", context)
    assert len(received) == 1


async def test_bootstrap_session_rejects_unknown_token(storefront_db):
    with pytest.raises(AuthError) as exc_info:
        await bootstrap_session("stale-token")
    assert exc_info.value.status_code == 401

    with pytest.raises(AuthError):
        await bootstrap_session(None)
