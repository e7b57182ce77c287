"""
Tests for the session state machine.
"""

import json
import threading

import pytest
import requests

from core.credential_cache import AUTH_FLAG_KEY, USER_KEY
from core.exceptions import ApiError, AuthenticationError, TransportError
from models.session import AuthConfidence, SessionPhase
from services.credit_service import CreditBalanceReconciler
from conftest import seed_cached_user, user_payload


def _user_body(**overrides):
    return {"success": True, "data": {"user": user_payload(**overrides)}}


def _cached_user(storage):
    raw = storage.get(USER_KEY)
    return json.loads(raw) if raw else None


class TestHydration:
    """Test optimistic restore from the credential cache."""

    def test_empty_cache_starts_anonymous(self, make_session):
        snapshot = make_session().snapshot()

        assert snapshot.is_authenticated is False
        assert snapshot.user is None
        assert snapshot.has_attempted_auth is False
        assert snapshot.confidence is AuthConfidence.UNKNOWN
        assert snapshot.phase is SessionPhase.ANONYMOUS

    def test_cached_user_is_optimistic(self, storage, make_session, ledger):
        seed_cached_user(storage, user_payload(creditsBalance=55))

        snapshot = make_session().snapshot()

        assert snapshot.is_authenticated is True
        assert snapshot.user.email == "a@b.com"
        assert snapshot.user.credits_balance == 55
        assert snapshot.confidence is AuthConfidence.OPTIMISTIC
        assert ledger.balance == 55

    def test_flag_without_user_is_cleared(self, storage, make_session):
        storage.set(AUTH_FLAG_KEY, "true")

        snapshot = make_session().snapshot()

        assert snapshot.is_authenticated is False
        assert storage.keys() == []

    def test_user_without_flag_is_cleared(self, storage, make_session):
        storage.set(USER_KEY, json.dumps(user_payload()))

        assert make_session().snapshot().is_authenticated is False
        assert storage.keys() == []


class TestSessionCheck:
    """Test the guarded one-shot session check."""

    def test_success_confirms_and_persists(self, fake_api, storage, make_session):
        fake_api.add("GET", "/api/auth/me", json_body=_user_body(creditsBalance=30))
        machine = make_session()

        assert machine.begin_session_check() is True

        snapshot = machine.snapshot()
        assert snapshot.is_authenticated is True
        assert snapshot.confidence is AuthConfidence.CONFIRMED
        assert snapshot.phase is SessionPhase.AUTHENTICATED
        assert snapshot.has_attempted_auth is True
        assert snapshot.is_validating_session is False
        assert _cached_user(storage)["creditsBalance"] == 30

    def test_second_call_is_rejected_without_network(self, fake_api, make_session):
        fake_api.add("GET", "/api/auth/me", json_body=_user_body())
        machine = make_session()

        assert machine.begin_session_check() is True
        assert machine.begin_session_check() is False
        assert len(fake_api.calls_to("GET", "/api/auth/me")) == 1

    def test_concurrent_callers_issue_one_request(self, fake_api, make_session):
        started = threading.Event()
        release = threading.Event()

        def slow_me(call):
            started.set()
            release.wait(5)
            return 200, _user_body()

        fake_api.add("GET", "/api/auth/me", handler=slow_me)
        machine = make_session()
        results = []

        first = threading.Thread(target=lambda: results.append(machine.begin_session_check()))
        first.start()
        assert started.wait(5)

        others = [threading.Thread(target=lambda: results.append(machine.begin_session_check())) for _ in range(4)]
        for thread in others:
            thread.start()
        for thread in others:
            thread.join(timeout=5)

        assert machine.snapshot().is_validating_session is True
        release.set()
        first.join(timeout=5)

        assert sorted(results) == [False, False, False, False, True]
        assert len(fake_api.calls_to("GET", "/api/auth/me")) == 1

    def test_background_check(self, fake_api, make_session):
        fake_api.add("GET", "/api/auth/me", json_body=_user_body())
        machine = make_session()

        thread = machine.begin_session_check_in_background()
        assert thread is not None
        thread.join(timeout=5)

        assert machine.snapshot().is_authenticated is True
        assert machine.begin_session_check_in_background() is None

    def test_network_failure_keeps_optimistic_session(self, fake_api, storage, make_session):
        seed_cached_user(storage, user_payload())
        fake_api.add("GET", "/api/auth/me", exc=requests.ConnectionError("offline"))
        machine = make_session()

        machine.begin_session_check()

        snapshot = machine.snapshot()
        assert snapshot.is_authenticated is True
        assert snapshot.confidence is AuthConfidence.OPTIMISTIC
        assert snapshot.error is None
        assert storage.get(AUTH_FLAG_KEY) == "true"

    def test_network_failure_while_anonymous_is_silent(self, fake_api, make_session):
        fake_api.add("GET", "/api/auth/me", exc=requests.Timeout("slow"))
        machine = make_session()

        machine.begin_session_check()

        snapshot = machine.snapshot()
        assert snapshot.is_authenticated is False
        assert snapshot.error is None
        assert snapshot.has_attempted_auth is True
        assert snapshot.phase is SessionPhase.ANONYMOUS_CONFIRMED

    def test_expired_cached_session_is_dropped(self, fake_api, storage, make_session):
        seed_cached_user(storage, user_payload())
        fake_api.add("GET", "/api/auth/me", status=401, json_body={"message": "Session expired"})
        machine = make_session()

        machine.begin_session_check()

        snapshot = machine.snapshot()
        assert snapshot.is_authenticated is False
        assert snapshot.confidence is AuthConfidence.CONFIRMED
        assert storage.keys() == []

    def test_result_dropped_when_logged_out_meanwhile(self, fake_api, make_session):
        started = threading.Event()
        release = threading.Event()

        def slow_me(call):
            started.set()
            release.wait(5)
            return 200, _user_body()

        fake_api.add("GET", "/api/auth/me", handler=slow_me)
        fake_api.add("POST", "/api/auth/logout", json_body={"success": True})
        machine = make_session()

        check = threading.Thread(target=machine.begin_session_check)
        check.start()
        assert started.wait(5)
        machine.logout()
        release.set()
        check.join(timeout=5)

        assert machine.snapshot().is_authenticated is False

    def test_dropped_result_keeps_newer_login(self, fake_api, make_session):
        """A check outlived by logout and a fresh login must not touch the new session."""
        started = threading.Event()
        release = threading.Event()

        def slow_me(call):
            started.set()
            release.wait(5)
            return 200, _user_body()

        fake_api.add("GET", "/api/auth/me", handler=slow_me)
        fake_api.add("POST", "/api/auth/logout", json_body={"success": True})
        fake_api.add("POST", "/api/auth/login", json_body=_user_body(id=2, email="b@c.com", creditsBalance=40))
        machine = make_session()

        check = threading.Thread(target=machine.begin_session_check)
        check.start()
        assert started.wait(5)
        machine.logout()
        machine.login("b@c.com", "pw")
        release.set()
        check.join(timeout=5)

        snapshot = machine.snapshot()
        assert snapshot.is_authenticated is True
        assert snapshot.phase is SessionPhase.AUTHENTICATED
        assert snapshot.user.id == 2
        assert snapshot.user.credits_balance == 40


class TestLogin:
    """Test explicit login."""

    def test_login_success(self, fake_api, storage, make_session):
        fake_api.add("POST", "/api/auth/login", json_body={
            "success": True,
            "data": {"user": {"id": 1, "email": "a@b.com", "creditsBalance": 100}},
        })
        machine = make_session()

        snapshot = machine.login("a@b.com", "secret")

        assert snapshot.is_authenticated is True
        assert snapshot.user.credits_balance == 100
        assert snapshot.is_loading is False
        assert snapshot.error is None
        assert _cached_user(storage)["email"] == "a@b.com"
        assert _cached_user(storage)["creditsBalance"] == 100
        assert storage.get(AUTH_FLAG_KEY) == "true"
        assert fake_api.calls_to("POST", "/api/auth/login")[0]["json"] == {
            "email": "a@b.com",
            "password": "secret",
        }

    def test_wrong_password_surfaces_server_message(self, fake_api, storage, make_session):
        fake_api.add("POST", "/api/auth/login", status=401, json_body={
            "success": False,
            "message": "Invalid email or password",
            "code": "INVALID_CREDENTIALS",
        })
        machine = make_session()

        with pytest.raises(AuthenticationError):
            machine.login("a@b.com", "wrong")

        snapshot = machine.snapshot()
        assert snapshot.is_authenticated is False
        assert snapshot.error == "Invalid email or password"
        assert snapshot.phase is SessionPhase.ERROR
        assert snapshot.is_loading is False
        assert storage.keys() == []
        assert machine.interceptor.cleared_count == 0

    def test_network_failure_surfaces_generic_message(self, fake_api, make_session):
        fake_api.add("POST", "/api/auth/login", exc=requests.ConnectionError("refused"))
        machine = make_session()

        with pytest.raises(TransportError):
            machine.login("a@b.com", "secret")

        assert machine.snapshot().error == "Network error. Please check your connection."

    def test_response_without_user_is_an_error(self, fake_api, make_session):
        fake_api.add("POST", "/api/auth/login", json_body={"success": True, "data": {}})
        machine = make_session()

        with pytest.raises(ApiError):
            machine.login("a@b.com", "secret")

        assert machine.snapshot().is_authenticated is False

    def test_clear_error(self, fake_api, make_session):
        fake_api.add("POST", "/api/auth/login", status=401, json_body={"message": "Nope"})
        machine = make_session()
        with pytest.raises(AuthenticationError):
            machine.login("a@b.com", "x")

        machine.clear_error()

        snapshot = machine.snapshot()
        assert snapshot.error is None
        assert snapshot.phase is SessionPhase.ANONYMOUS_CONFIRMED


class TestLogoutAndForcedClear:
    """Test leaving the authenticated state."""

    def _logged_in(self, fake_api, make_session):
        fake_api.add("POST", "/api/auth/login", json_body=_user_body())
        machine = make_session()
        machine.login("a@b.com", "secret")
        return machine

    def test_logout_clears_everything(self, fake_api, storage, ledger, make_session):
        machine = self._logged_in(fake_api, make_session)
        fake_api.add("POST", "/api/auth/logout", json_body={"success": True})

        snapshot = machine.logout()

        assert snapshot.is_authenticated is False
        assert snapshot.user is None
        assert snapshot.has_attempted_auth is True
        assert storage.keys() == []
        assert ledger.balance == 0

    def test_logout_clears_even_when_server_fails(self, fake_api, storage, make_session):
        machine = self._logged_in(fake_api, make_session)
        fake_api.add("POST", "/api/auth/logout", status=500, json_body={"message": "boom"})

        snapshot = machine.logout()

        assert snapshot.is_authenticated is False
        assert snapshot.error is None
        assert storage.keys() == []

    def test_forced_clear_is_idempotent(self, fake_api, storage, make_session):
        machine = self._logged_in(fake_api, make_session)

        assert machine.forced_clear() is True
        assert machine.forced_clear() is False

        snapshot = machine.snapshot()
        assert snapshot.is_authenticated is False
        assert snapshot.has_attempted_auth is True
        assert storage.keys() == []

    def test_forced_clear_blocks_later_session_check(self, fake_api, make_session):
        machine = make_session()

        assert machine.forced_clear() is False
        assert machine.begin_session_check() is False
        assert fake_api.calls_to("GET", "/api/auth/me") == []


class TestBalanceProjection:
    """Test that the session user's balance is read from the ledger."""

    def test_server_balance_reaches_both_views(self, fake_api, storage, ledger, make_session):
        fake_api.add("POST", "/api/auth/login", json_body=_user_body(creditsBalance=100))
        machine = make_session()
        machine.login("a@b.com", "secret")
        reconciler = CreditBalanceReconciler(ledger, on_server_balance=machine.persist_current_user)

        reconciler.apply_server_balance(250)

        assert machine.snapshot().user.credits_balance == 250
        assert ledger.snapshot().balance == 250
        assert _cached_user(storage)["creditsBalance"] == 250

    def test_local_delta_is_visible_but_not_cached(self, fake_api, storage, ledger, make_session):
        fake_api.add("POST", "/api/auth/login", json_body=_user_body(creditsBalance=100))
        machine = make_session()
        machine.login("a@b.com", "secret")
        reconciler = CreditBalanceReconciler(ledger, on_server_balance=machine.persist_current_user)

        reconciler.apply_local_delta(-16)
        machine.persist_current_user()

        assert machine.snapshot().user.credits_balance == 84
        assert _cached_user(storage)["creditsBalance"] == 100


class TestAccountOperations:
    """Test registration, verification and profile operations."""

    def test_register_sets_verification_sent(self, fake_api, make_session):
        fake_api.add("POST", "/api/auth/register", status=201, json_body={"success": True})
        machine = make_session()

        snapshot = machine.register({
            "firstName": "<b>Ada</b>",
            "lastName": "Lovelace",
            "email": "a@b.com",
            "password": "secret123",
        })

        assert snapshot.email_verification_sent is True
        assert snapshot.is_authenticated is False
        sent = fake_api.calls_to("POST", "/api/auth/register")[0]["json"]
        assert sent["firstName"] == "Ada"
        assert sent["preferredLanguage"] == "en"

    def test_register_failure_is_surfaced(self, fake_api, make_session):
        fake_api.add("POST", "/api/auth/register", status=400, json_body={
            "message": "Email already registered",
            "errors": {"email": "Email already registered"},
        })
        machine = make_session()

        with pytest.raises(ApiError):
            machine.register({"firstName": "A", "lastName": "B", "email": "a@b.com", "password": "x"})

        assert machine.snapshot().error == "Email already registered"

    def test_verify_email_signs_in(self, fake_api, storage, make_session):
        fake_api.add("GET", "/api/auth/verify-email", json_body=_user_body())
        machine = make_session()

        snapshot = machine.verify_email("tok123")

        assert snapshot.is_authenticated is True
        assert fake_api.calls_to("GET", "/api/auth/verify-email")[0]["params"] == {"token": "tok123"}
        assert storage.get(AUTH_FLAG_KEY) == "true"

    def test_verify_email_without_user_stays_anonymous(self, fake_api, make_session):
        fake_api.add("GET", "/api/auth/verify-email", json_body={"success": True, "data": {}})
        machine = make_session()

        assert machine.verify_email("tok").is_authenticated is False

    def test_update_profile_stores_returned_user(self, fake_api, storage, make_session):
        fake_api.add("POST", "/api/auth/login", json_body=_user_body())
        fake_api.add("PUT", "/api/user/profile", json_body=_user_body(firstName="Augusta"))
        machine = make_session()
        machine.login("a@b.com", "secret")

        snapshot = machine.update_profile({"firstName": "  Augusta<script>x</script> "})

        assert snapshot.user.first_name == "Augusta"
        assert _cached_user(storage)["firstName"] == "Augusta"
        sent = fake_api.calls_to("PUT", "/api/user/profile")[0]["json"]
        assert "<script>" not in sent["firstName"]

    def test_update_language_preference(self, fake_api, storage, make_session):
        fake_api.add("POST", "/api/auth/login", json_body=_user_body())
        fake_api.add("PUT", "/api/user/language-preference", json_body={
            "success": True,
            "data": {"preferredLanguage": "es"},
        })
        machine = make_session()
        machine.login("a@b.com", "secret")

        snapshot = machine.update_language_preference("ES")

        assert snapshot.user.preferred_language == "es"
        assert _cached_user(storage)["preferredLanguage"] == "es"

    def test_set_user_none_signs_out(self, fake_api, storage, make_session):
        fake_api.add("POST", "/api/auth/login", json_body=_user_body())
        machine = make_session()
        machine.login("a@b.com", "secret")

        snapshot = machine.set_user(None)

        assert snapshot.is_authenticated is False
        assert storage.keys() == []

    def test_mark_auth_attempted(self, make_session):
        machine = make_session()
        machine.mark_auth_attempted()

        assert machine.snapshot().has_attempted_auth is True
