from __future__ import annotations

from dataclasses import dataclass

from pydantic import SecretStr

from ..logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    session_id: str | None
    sequence: int | None
    resume_url: str | None
    intents: int
    user_id: str | None

    @property
    def can_resume(self) -> bool:
        return self.session_id is not None and self.sequence is not None


class SessionState:
    """Session bookkeeping. Mutated only by the connection state machine."""

    __slots__ = (
        "session_id",
        "sequence",
        "resume_url",
        "intents",
        "identify_token",
        "user_id",
    )

    def __init__(self, *, identify_token: SecretStr | str, intents: int) -> None:
        if not isinstance(identify_token, SecretStr):
            identify_token = SecretStr(identify_token)
        self.identify_token = identify_token
        self.intents = int(intents)
        self.session_id: str | None = None
        self.sequence: int | None = None
        self.resume_url: str | None = None
        self.user_id: str | None = None

    def __repr__(self) -> str:
        return (
            f"SessionState(session_id={self.session_id!r}, "
            f"sequence={self.sequence!r}, resume_url={self.resume_url!r})"
        )

    @property
    def can_resume(self) -> bool:
        return self.session_id is not None and self.sequence is not None

    def token(self) -> str:
        return self.identify_token.get_secret_value()

    def observe_sequence(self, sequence: int | None) -> None:
        if sequence is None:
            return
        if self.sequence is not None and sequence < self.sequence:
            logger.debug(
                "session.sequence.stale", sequence=sequence, current=self.sequence
            )
            return
        self.sequence = sequence

    def capture_ready(
        self,
        *,
        session_id: str,
        resume_url: str | None,
        user_id: str | None,
    ) -> None:
        self.session_id = session_id
        self.resume_url = resume_url
        self.user_id = user_id

    def clear(self) -> None:
        """Forget the session so the next connection identifies from scratch."""
        self.session_id = None
        self.sequence = None
        self.resume_url = None

    def connect_url(self, default: str) -> str:
        if self.can_resume and self.resume_url:
            return self.resume_url
        return default

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            sequence=self.sequence,
            resume_url=self.resume_url,
            intents=self.intents,
            user_id=self.user_id,
        )
