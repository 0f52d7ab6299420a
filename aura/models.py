from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DECIMAL,
    Date,
    DateTime,
    Enum,
    ForeignKeyConstraint,
    Index,
    Integer,
    JSON,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()
metadata = Base.metadata

APPOINTMENT_STATUSES = ("pending", "confirmed", "completed", "canceled")


class AuthUser(Base):
    __tablename__ = "auth_user"
    __table_args__ = (
        Index("email", "email", unique=True),
        Index("ix_auth_user_phone", "phone"),
    )

    id = mapped_column(Integer, primary_key=True)
    email = mapped_column(String(255), nullable=False)
    password_hash = mapped_column(String(72), nullable=False)
    role = mapped_column(
        Enum("CLIENT", "OWNER", "PROFESSIONAL", name="auth_role"),
        nullable=False,
        server_default=text("'CLIENT'"),
    )
    full_name = mapped_column(String(150))
    # digits only, see services.identity.normalize_phone
    phone = mapped_column(String(20))
    created_at = mapped_column(DateTime, server_default=text("CURRENT_TIMESTAMP"))

    appointment: Mapped[List["Appointment"]] = relationship(
        "Appointment", uselist=True, back_populates="client"
    )


class Salon(Base):
    __tablename__ = "salon"
    __table_args__ = (Index("slug", "slug", unique=True),)

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(150), nullable=False)
    slug = mapped_column(String(150), nullable=False)
    phone = mapped_column(String(30))
    address = mapped_column(String(255))
    # {"monday": {"closed": false, "open": "09:00", "close": "18:00"}, ...}
    operating_hours = mapped_column(JSON)
    subscription_plan = mapped_column(String(20))
    subscription_status = mapped_column(String(20))
    trial_ends_at = mapped_column(DateTime)
    ai_enabled = mapped_column(Boolean, nullable=False, server_default=text("0"))
    ai_promo_discount = mapped_column(Integer)
    payment_public_key = mapped_column(String(255))
    payment_secret_key = mapped_column(String(255))
    pays_on_site = mapped_column(Boolean, nullable=False, server_default=text("0"))
    created_at = mapped_column(DateTime, server_default=text("CURRENT_TIMESTAMP"))

    professionals: Mapped[List["Professional"]] = relationship(
        "Professional", uselist=True, back_populates="salon"
    )
    services: Mapped[List["Service"]] = relationship(
        "Service", uselist=True, back_populates="salon"
    )
    products: Mapped[List["Product"]] = relationship(
        "Product", uselist=True, back_populates="salon"
    )
    appointment: Mapped[List["Appointment"]] = relationship(
        "Appointment", uselist=True, back_populates="salon"
    )

    @property
    def gateway_configured(self):
        return bool(self.payment_secret_key) and not self.pays_on_site


class Professional(Base):
    __tablename__ = "professional"
    __table_args__ = (
        ForeignKeyConstraint(
            ["salon_id"], ["salon.id"], ondelete="CASCADE", name="fk_professional_salon"
        ),
        ForeignKeyConstraint(
            ["user_id"], ["auth_user.id"], ondelete="SET NULL", name="fk_professional_user"
        ),
        Index("ix_professional_salon", "salon_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    salon_id = mapped_column(Integer, nullable=False)
    user_id = mapped_column(Integer)
    name = mapped_column(String(150), nullable=False)
    role = mapped_column(String(100))
    status = mapped_column(String(10), nullable=False, server_default=text("'active'"))
    operating_hours = mapped_column(JSON)

    salon: Mapped["Salon"] = relationship("Salon", back_populates="professionals")
    appointment: Mapped[List["Appointment"]] = relationship(
        "Appointment", uselist=True, back_populates="professional"
    )


class Service(Base):
    __tablename__ = "service"
    __table_args__ = (
        ForeignKeyConstraint(
            ["salon_id"], ["salon.id"], ondelete="CASCADE", name="fk_service_salon"
        ),
        CheckConstraint("duration_min > 0", name="ck_service_duration_positive"),
        CheckConstraint("price >= 0", name="ck_service_price_non_negative"),
        Index("ix_service_salon", "salon_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    salon_id = mapped_column(Integer, nullable=False)
    name = mapped_column(String(150), nullable=False)
    category = mapped_column(String(100))
    price = mapped_column(DECIMAL(10, 2), nullable=False)
    duration_min = mapped_column(Integer, nullable=False)
    description = mapped_column(Text)
    image_url = mapped_column(String(500))

    salon: Mapped["Salon"] = relationship("Salon", back_populates="services")


class Product(Base):
    __tablename__ = "product"
    __table_args__ = (
        ForeignKeyConstraint(
            ["salon_id"], ["salon.id"], ondelete="CASCADE", name="fk_product_salon"
        ),
        CheckConstraint("price >= 0", name="ck_product_price_non_negative"),
    )

    id = mapped_column(Integer, primary_key=True)
    salon_id = mapped_column(Integer, nullable=False)
    name = mapped_column(String(150), nullable=False)
    price = mapped_column(DECIMAL(10, 2), nullable=False)
    stock = mapped_column(Integer, nullable=False, server_default=text("0"))

    salon: Mapped["Salon"] = relationship("Salon", back_populates="products")


class Appointment(Base):
    __tablename__ = "appointment"
    __table_args__ = (
        ForeignKeyConstraint(
            ["salon_id"], ["salon.id"], ondelete="CASCADE", name="fk_appointment_salon"
        ),
        ForeignKeyConstraint(
            ["client_id"], ["auth_user.id"], name="fk_appointment_client"
        ),
        ForeignKeyConstraint(
            ["professional_id"],
            ["professional.id"],
            ondelete="SET NULL",
            name="fk_appointment_professional",
        ),
        CheckConstraint("duration_min > 0", name="ck_appointment_duration_positive"),
        CheckConstraint("valor >= 0", name="ck_appointment_valor_non_negative"),
        Index("ix_appointment_professional_date", "professional_id", "appt_date"),
        Index("ix_appointment_salon", "salon_id"),
    )

    id = mapped_column(Integer, primary_key=True)
    salon_id = mapped_column(Integer, nullable=False)
    client_id = mapped_column(Integer, nullable=False)
    professional_id = mapped_column(Integer)
    service_names = mapped_column(String(500), nullable=False)
    valor = mapped_column(DECIMAL(10, 2), nullable=False)
    appt_date = mapped_column(Date, nullable=False)
    start_time = mapped_column(Time, nullable=False)
    duration_min = mapped_column(Integer, nullable=False)
    status = mapped_column(
        Enum(*APPOINTMENT_STATUSES, name="appointment_status"),
        nullable=False,
        server_default=text("'pending'"),
    )
    booked_by_ai = mapped_column(Boolean, nullable=False, server_default=text("0"))
    payment_id = mapped_column(String(64))
    payment_method = mapped_column(String(40))
    created_at = mapped_column(DateTime, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = mapped_column(DateTime)

    salon: Mapped["Salon"] = relationship("Salon", back_populates="appointment")
    client: Mapped["AuthUser"] = relationship("AuthUser", back_populates="appointment")
    professional: Mapped[Optional["Professional"]] = relationship(
        "Professional", back_populates="appointment"
    )
