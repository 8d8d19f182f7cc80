"""Per-client session state and the route guard evaluated against it.

A ``SessionManager`` is constructed once per client (or per request on the
server) with explicit loaders for the profile row and the admin role. Auth
state changes are pushed in through ``handle_auth_event``; listeners
registered with ``subscribe`` are notified after every state change and can
detach with the callable that ``subscribe`` returns.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from ophthexam.core.enums import AppRole, ProfileStatus
from ophthexam.db.models import Profile, UserRole

logger = structlog.get_logger(__name__)

AUTH_ROUTE = "/auth"
DASHBOARD_ROUTE = "/dashboard"
PENDING_APPROVAL_ROUTE = "/aguardando-aprovacao"
SUSPENDED_ROUTE = "/conta-suspensa"

SIGNED_OUT = "SIGNED_OUT"


@dataclass(frozen=True)
class SessionSnapshot:
    user_id: str
    email: str
    session_id: str | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class ProfileSnapshot:
    id: str
    user_id: str
    full_name: str
    status: str
    crm: str = ""
    crm_uf: str = ""
    clinic_name: str | None = None


@dataclass(frozen=True)
class SessionState:
    session: SessionSnapshot | None = None
    profile: ProfileSnapshot | None = None
    is_admin: bool = False
    is_loading: bool = True
    profile_loading: bool = False

    @property
    def user_id(self) -> str | None:
        return self.session.user_id if self.session else None


ProfileLoader = Callable[[str], "ProfileSnapshot | None"]
AdminChecker = Callable[[str], bool]
Listener = Callable[[SessionState], None]


class SessionManager:
    def __init__(self, *, load_profile: ProfileLoader, check_admin: AdminChecker) -> None:
        self._load_profile = load_profile
        self._check_admin = check_admin
        self._listeners: list[Listener] = []
        self._state = SessionState()

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def handle_auth_event(self, event: str, session: SessionSnapshot | None) -> SessionState:
        if event == SIGNED_OUT or session is None:
            self._set_state(SessionState(is_loading=False))
            return self._state

        same_user = self._state.user_id == session.user_id
        self._set_state(
            SessionState(
                session=session,
                profile=self._state.profile if same_user else None,
                is_admin=self._state.is_admin if same_user else False,
                is_loading=False,
                profile_loading=True,
            )
        )
        self._load_user(session.user_id)
        return self._state

    def refresh_profile(self) -> SessionState:
        if self._state.session is not None:
            self._set_state(replace(self._state, profile_loading=True))
            self._load_user(self._state.session.user_id)
        return self._state

    def sign_out(self) -> SessionState:
        return self.handle_auth_event(SIGNED_OUT, None)

    def _load_user(self, user_id: str) -> None:
        profile = self._load_profile(user_id)
        is_admin = self._check_admin(user_id)
        if self._state.user_id != user_id:
            # A sign-out or user switch happened while loading.
            return
        self._set_state(replace(self._state, profile=profile, is_admin=is_admin, profile_loading=False))

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)


@dataclass(frozen=True)
class GuardDecision:
    render: bool
    redirect_to: str | None = None
    from_path: str | None = None


def evaluate_route_guard(
    state: SessionState,
    path: str,
    *,
    require_approved: bool = True,
    require_admin: bool = False,
) -> GuardDecision:
    if state.is_loading:
        return GuardDecision(render=False)

    if state.session is None:
        return GuardDecision(render=False, redirect_to=AUTH_ROUTE, from_path=path)

    if state.profile_loading:
        return GuardDecision(render=False)

    if require_admin and not state.is_admin:
        return GuardDecision(render=False, redirect_to=DASHBOARD_ROUTE)

    if require_approved and state.profile is not None:
        if state.profile.status == ProfileStatus.PENDING.value:
            return GuardDecision(render=False, redirect_to=PENDING_APPROVAL_ROUTE)
        if state.profile.status == ProfileStatus.SUSPENDED.value:
            return GuardDecision(render=False, redirect_to=SUSPENDED_ROUTE)

    if require_approved and (state.profile is None or state.profile.status != ProfileStatus.APPROVED.value):
        return GuardDecision(render=False)

    return GuardDecision(render=True)


def db_profile_loader(db: Session) -> ProfileLoader:
    def load(user_id: str) -> ProfileSnapshot | None:
        row = db.scalar(select(Profile).where(Profile.user_id == user_id))
        if row is None:
            logger.info("profile_not_found", user_id=user_id)
            return None
        return ProfileSnapshot(
            id=row.id,
            user_id=row.user_id,
            full_name=row.full_name,
            status=row.status,
            crm=row.crm,
            crm_uf=row.crm_uf,
            clinic_name=row.clinic_name,
        )

    return load


def db_admin_checker(db: Session) -> AdminChecker:
    def check(user_id: str) -> bool:
        role = db.scalar(
            select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role == AppRole.ADMIN.value)
        )
        return role is not None

    return check


def session_manager_for(db: Session) -> SessionManager:
    return SessionManager(load_profile=db_profile_loader(db), check_admin=db_admin_checker(db))
