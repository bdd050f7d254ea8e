from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.ids import gen_id
from app.models.base import AuditMixin, Base


TIER_USER = "user"
TIER_PAID = "paid"
TIER_ADMIN = "admin"
USER_TIERS = (TIER_USER, TIER_PAID, TIER_ADMIN)


class UserAccount(AuditMixin, Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(40), primary_key=True, default=lambda: gen_id("usr"))

    # identity provider subject
    external_id: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)

    email: Mapped[str] = mapped_column(String(320), nullable=False)
    first_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    contact_number: Mapped[str] = mapped_column(String(60), nullable=False, default="")

    # "user" | "paid" | "admin"
    tier: Mapped[str] = mapped_column(String(20), nullable=False, default=TIER_USER)

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email
