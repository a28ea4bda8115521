from datetime import datetime

from sqlalchemy import Boolean, DateTime, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from realmgate.db.base import Base


class Client(Base):
    __tablename__ = "clients"
    __table_args__ = (UniqueConstraint("realm_id", "name", name="uq_clients_realm_name"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # e.g. cl_ab12cd
    realm_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # public identifier presented by client-login, e.g. client_<32 hex>
    client_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    client_secret: Mapped[str] = mapped_column(String(128), nullable=False)

    # {"allowed_hosts": ["api.acme.com", ...]}; empty list means unrestricted
    endpoints: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    redirect_urls: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    sso_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    twofa_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    smtp_config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    @property
    def allowed_hosts(self) -> list[str]:
        hosts = (self.endpoints or {}).get("allowed_hosts")
        if not isinstance(hosts, list):
            return []
        return [h for h in hosts if isinstance(h, str)]
