"""Session handling for the remote store (Firebase Identity Toolkit REST API)."""

import inspect
import time
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

import httpx
from loguru import logger

from .config import AuthMode
from .errors import AuthenticationError, RemoteTimeoutError, RemoteUnavailableError
from .store import KeyValueStore


IDENTITY_URL = "https://identitytoolkit.googleapis.com/v1"
TOKEN_URL = "https://securetoken.googleapis.com/v1/token"
SESSION_KEY = "auth_session"

# Refresh tokens this many seconds before they expire
EXPIRY_MARGIN = 60

CredentialsPrompt = Callable[[], Union[Tuple[str, str], Awaitable[Tuple[str, str]]]]


@dataclass
class AuthSession:
    user_id: str
    id_token: str
    refresh_token: str
    expires_at: float
    anonymous: bool = False

    def is_valid(self, now: float) -> bool:
        return bool(self.id_token) and self.expires_at - EXPIRY_MARGIN > now

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class FirebaseAuth:
    """
    Keeps an authenticated session for remote calls.

    Recovery order when no valid token is cached:
    1. Refresh with the stored refresh token
    2. Interactive email/password sign-in, if a prompt is supplied
    3. Anonymous sign-in, if the configured mode allows it
    """

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient,
        mode: AuthMode = AuthMode.ANONYMOUS,
        kv: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time
    ):
        self.api_key = api_key
        self.client = client
        self.mode = mode
        self.kv = kv
        self.clock = clock
        self._session: Optional[AuthSession] = None
        self._loaded = False

    @property
    def current_user(self) -> Optional[str]:
        if self._session and self._session.is_valid(self.clock()):
            return self._session.user_id
        return None

    async def token(self) -> Optional[str]:
        """A valid id token without prompting, refreshing if needed."""
        await self._load()
        if self._session is None:
            return None
        if not self._session.is_valid(self.clock()):
            try:
                await self._refresh()
            except AuthenticationError as e:
                logger.warning(f"Token refresh failed: {e}")
                return None
        return self._session.id_token

    async def ensure_session(self, interactive: Optional[CredentialsPrompt] = None) -> AuthSession:
        """Return a valid session, signing in if necessary."""
        token = await self.token()
        if token and self._session:
            return self._session

        if interactive is not None and self.mode is AuthMode.PASSWORD:
            credentials = interactive()
            if inspect.isawaitable(credentials):
                credentials = await credentials
            email, password = credentials
            await self.sign_in_with_password(email, password)
        elif self.mode is AuthMode.ANONYMOUS:
            await self.sign_in_anonymously()
        else:
            raise AuthenticationError("User not signed in")

        return self._session

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        data = await self._post(
            f"{IDENTITY_URL}/accounts:signInWithPassword",
            json={"email": email, "password": password, "returnSecureToken": True}
        )
        session = self._session_from_identity(data, anonymous=False)
        logger.info(f"Signed in as {email}")
        await self._store(session)
        return session

    async def sign_in_anonymously(self) -> AuthSession:
        data = await self._post(
            f"{IDENTITY_URL}/accounts:signUp",
            json={"returnSecureToken": True}
        )
        session = self._session_from_identity(data, anonymous=True)
        logger.info("Signed in anonymously")
        await self._store(session)
        return session

    async def sign_out(self) -> None:
        self._session = None
        if self.kv is not None:
            await self.kv.remove(SESSION_KEY)

    async def _refresh(self) -> None:
        if self._session is None or not self._session.refresh_token:
            raise AuthenticationError("No refresh token")
        data = await self._post(
            TOKEN_URL,
            data={"grant_type": "refresh_token", "refresh_token": self._session.refresh_token}
        )
        session = AuthSession(
            user_id=data.get("user_id") or self._session.user_id,
            id_token=data["id_token"],
            refresh_token=data.get("refresh_token") or self._session.refresh_token,
            expires_at=self.clock() + float(data.get("expires_in", 3600)),
            anonymous=self._session.anonymous
        )
        logger.debug("Refreshed id token")
        await self._store(session)

    def _session_from_identity(self, data: Dict[str, Any], anonymous: bool) -> AuthSession:
        return AuthSession(
            user_id=data.get("localId", ""),
            id_token=data["idToken"],
            refresh_token=data.get("refreshToken", ""),
            expires_at=self.clock() + float(data.get("expiresIn", 3600)),
            anonymous=anonymous
        )

    async def _load(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if self.kv is None:
            return
        stored = await self.kv.get(SESSION_KEY)
        if stored:
            try:
                self._session = AuthSession(**stored)
            except TypeError as e:
                logger.warning(f"Discarding unreadable auth session: {e}")

    async def _store(self, session: AuthSession) -> None:
        self._session = session
        self._loaded = True
        if self.kv is not None:
            await self.kv.set(SESSION_KEY, session.to_dict())

    async def _post(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self.client.post(url, params={"key": self.api_key}, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteTimeoutError(f"Sign-in timed out: {e}") from e
        except httpx.TransportError as e:
            raise RemoteUnavailableError(f"Sign-in failed, network unavailable: {e}") from e

        if response.status_code >= 400:
            try:
                message = response.json()["error"]["message"]
            except (ValueError, KeyError, TypeError):
                message = response.text
            raise AuthenticationError(f"Sign-in rejected: {message}", response.status_code)
        return response.json()
