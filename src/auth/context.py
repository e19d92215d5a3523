from dataclasses import dataclass
from datetime import datetime
from src.auth.permissions import coerce_role
from src.domain.records import Principal


@dataclass
class AuthContext:
    """Identity context for authenticated requests."""
    principal: Principal
    auth_method: str = "session"
    global_role: str = ""
    session_id: str = ""
    expires_at: datetime | None = None

    def __post_init__(self) -> None:
        self.global_role = coerce_role(self.principal.role)
        if not self.session_id:
            self.session_id = self.principal.id

    @property
    def user_id(self) -> str:
        return self.principal.id

    @property
    def email(self) -> str:
        return self.principal.email
