from uuid import UUID

from pydantic import BaseModel

from app.core.enums import UserRole


class CurrentUser(BaseModel):
    """Authenticated actor handed to the services: identity plus role, nothing else."""

    id: UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def is_reviewer(self) -> bool:
        return self.role in (UserRole.VERIFIER.value, UserRole.ADMIN.value)
