from __future__ import annotations

import pytest

from ophthexam.services.session import (
    SIGNED_OUT,
    GuardDecision,
    ProfileSnapshot,
    SessionManager,
    SessionSnapshot,
    SessionState,
    evaluate_route_guard,
)

ALICE = SessionSnapshot(user_id="u-alice", email="alice@example.com")
BOB = SessionSnapshot(user_id="u-bob", email="bob@example.com")


def _profile(user_id: str, status: str = "approved") -> ProfileSnapshot:
    return ProfileSnapshot(id=f"p-{user_id}", user_id=user_id, full_name=user_id, status=status)


class _Directory:
    def __init__(self) -> None:
        self.profiles = {"u-alice": _profile("u-alice"), "u-bob": _profile("u-bob", "pending")}
        self.admins = {"u-alice"}
        self.profile_calls: list[str] = []

    def load_profile(self, user_id: str):
        self.profile_calls.append(user_id)
        return self.profiles.get(user_id)

    def check_admin(self, user_id: str) -> bool:
        return user_id in self.admins


@pytest.fixture()
def directory() -> _Directory:
    return _Directory()


@pytest.fixture()
def manager(directory) -> SessionManager:
    return SessionManager(load_profile=directory.load_profile, check_admin=directory.check_admin)


def test_initial_state_is_loading(manager):
    assert manager.state == SessionState()
    assert manager.state.is_loading is True
    assert manager.state.user_id is None


def test_sign_in_loads_profile_and_admin_flag(manager):
    state = manager.handle_auth_event("SIGNED_IN", ALICE)
    assert state.session == ALICE
    assert state.profile.status == "approved"
    assert state.is_admin is True
    assert state.is_loading is False
    assert state.profile_loading is False


def test_listeners_see_profile_loading_then_loaded(manager):
    seen: list[SessionState] = []
    manager.subscribe(seen.append)

    manager.handle_auth_event("SIGNED_IN", BOB)

    assert [s.profile_loading for s in seen] == [True, False]
    assert seen[0].profile is None
    assert seen[-1].profile.status == "pending"
    assert seen[-1].is_admin is False


def test_unsubscribe_stops_notifications(manager):
    seen: list[SessionState] = []
    unsubscribe = manager.subscribe(seen.append)
    manager.handle_auth_event("SIGNED_IN", ALICE)
    count = len(seen)

    unsubscribe()
    unsubscribe()
    manager.sign_out()
    assert len(seen) == count


def test_sign_out_clears_everything(manager):
    manager.handle_auth_event("SIGNED_IN", ALICE)
    state = manager.handle_auth_event(SIGNED_OUT, None)
    assert state == SessionState(is_loading=False)


def test_switching_user_drops_previous_profile(manager):
    seen: list[SessionState] = []
    manager.handle_auth_event("SIGNED_IN", ALICE)
    manager.subscribe(seen.append)

    manager.handle_auth_event("SIGNED_IN", BOB)
    assert seen[0].profile is None
    assert seen[0].is_admin is False
    assert manager.state.profile.user_id == "u-bob"


def test_token_refresh_keeps_profile_while_reloading(manager):
    manager.handle_auth_event("SIGNED_IN", ALICE)
    seen: list[SessionState] = []
    manager.subscribe(seen.append)

    manager.handle_auth_event("TOKEN_REFRESHED", ALICE)
    assert seen[0].profile_loading is True
    assert seen[0].profile is not None
    assert seen[0].is_admin is True


def test_refresh_profile_picks_up_status_change(manager, directory):
    manager.handle_auth_event("SIGNED_IN", BOB)
    directory.profiles["u-bob"] = _profile("u-bob", "approved")

    state = manager.refresh_profile()
    assert state.profile.status == "approved"
    assert directory.profile_calls == ["u-bob", "u-bob"]


def test_refresh_profile_without_session_is_noop(manager, directory):
    manager.refresh_profile()
    assert directory.profile_calls == []


def _state(status: str | None = "approved", *, admin: bool = False) -> SessionState:
    return SessionState(
        session=ALICE,
        profile=_profile("u-alice", status) if status else None,
        is_admin=admin,
        is_loading=False,
    )


@pytest.mark.parametrize(
    "state, kwargs, expected",
    [
        (SessionState(), {}, GuardDecision(render=False)),
        (SessionState(is_loading=False), {}, GuardDecision(render=False, redirect_to="/auth", from_path="/exames")),
        (
            SessionState(session=ALICE, is_loading=False, profile_loading=True),
            {},
            GuardDecision(render=False),
        ),
        (_state(), {"require_admin": True}, GuardDecision(render=False, redirect_to="/dashboard")),
        (_state(admin=True), {"require_admin": True}, GuardDecision(render=True)),
        (_state("pending"), {}, GuardDecision(render=False, redirect_to="/aguardando-aprovacao")),
        (_state("suspended"), {}, GuardDecision(render=False, redirect_to="/conta-suspensa")),
        (_state("pending"), {"require_approved": False}, GuardDecision(render=True)),
        (_state(None), {}, GuardDecision(render=False)),
        (_state(), {}, GuardDecision(render=True)),
    ],
)
def test_route_guard_decisions(state, kwargs, expected):
    assert evaluate_route_guard(state, "/exames", **kwargs) == expected
