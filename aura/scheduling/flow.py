"""
Booking state machine.

One machine serves three entry points:

- GUIDED: the client-facing conversation, starting at IDENTITY_CHECK;
- MANUAL: staff filling the form from a calendar click, starting at
  SERVICE_SELECTION with professional/date possibly pre-selected;
- RESCHEDULE: a drag on the staff calendar, starting at REVIEW_CONFIRM with
  the new target already chosen.

All three end in ``confirm`` and go through the same lifecycle calls, so the
overlap check is the same no matter how the booking arrived.

The draft is plain data (it round-trips through the session cookie).
Everything the machine needs from the outside world travels in a
``BookingContext`` handed to each transition.
"""

import datetime
import enum
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import List, Optional

from ..errors import (
    BookingError,
    ConflictError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    PaymentDeclinedError,
    ValidationError,
)
from ..services import identity as identity_service
from . import lifecycle
from .access import promo_discount_percent
from .calendar import (
    MINUTES_PER_DAY,
    DayWindow,
    format_time_of_day,
    parse_time_of_day,
    window_for,
)
from .pricing import DEFAULT_TAX_RATE, quote
from .slots import (
    SAME_DAY_BUFFER_MINUTES,
    SLOT_STEP_MINUTES,
    bookable_dates,
    generate_slots,
)


class BookingState(str, enum.Enum):
    IDENTITY_CHECK = "IDENTITY_CHECK"
    SERVICE_SELECTION = "SERVICE_SELECTION"
    PROFESSIONAL_SELECTION = "PROFESSIONAL_SELECTION"
    DATE_SELECTION = "DATE_SELECTION"
    TIME_SELECTION = "TIME_SELECTION"
    REVIEW_CONFIRM = "REVIEW_CONFIRM"
    PAYMENT = "PAYMENT"
    TERMINAL_SUCCESS = "TERMINAL_SUCCESS"


STATE_ORDER = list(BookingState)


class IdentityStep(str, enum.Enum):
    """Sub-steps of IDENTITY_CHECK."""

    CONTACT = "CONTACT"
    EMAIL = "EMAIL"
    NAME = "NAME"
    REGISTER_PASSWORD = "REGISTER_PASSWORD"
    CREDENTIAL = "CREDENTIAL"
    DONE = "DONE"


class EntryMode(str, enum.Enum):
    GUIDED = "guided"
    MANUAL = "manual"
    RESCHEDULE = "reschedule"


BOOKING_WINDOW_DAYS = 14


@dataclass
class BookingDraft:
    salon_id: int
    mode: EntryMode = EntryMode.GUIDED
    state: BookingState = BookingState.IDENTITY_CHECK
    entry_state: BookingState = BookingState.IDENTITY_CHECK
    identity_step: IdentityStep = IdentityStep.CONTACT
    phone: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    client_id: Optional[int] = None
    service_ids: List[int] = field(default_factory=list)
    product_ids: List[int] = field(default_factory=list)
    professional_id: Optional[int] = None
    date: Optional[str] = None
    time: Optional[str] = None
    duration_min: Optional[int] = None
    via_assistant: bool = False
    discount_percent: int = 0
    appointment_id: Optional[int] = None
    payment: Optional[dict] = None
    notice: Optional[str] = None

    def __post_init__(self):
        self.mode = EntryMode(self.mode)
        self.state = BookingState(self.state)
        self.entry_state = BookingState(self.entry_state)
        self.identity_step = IdentityStep(self.identity_step)

    def to_dict(self):
        data = asdict(self)
        for key in ("mode", "state", "entry_state", "identity_step"):
            data[key] = data[key].value
        return data

    @classmethod
    def from_dict(cls, data):
        known = {k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__}
        if "salon_id" not in known:
            raise ValidationError("No booking in progress")
        return cls(**known)

    @property
    def on_date(self) -> Optional[datetime.date]:
        return datetime.date.fromisoformat(self.date) if self.date else None


@dataclass
class BookingContext:
    """Everything a transition may consult besides the draft itself."""

    salon: object
    now: datetime.datetime
    promo_verified: bool = False
    gateway: Optional[object] = None
    identity: object = identity_service
    store: object = lifecycle
    tax_rate: Decimal = DEFAULT_TAX_RATE
    window_days: int = BOOKING_WINDOW_DAYS
    slot_step: int = SLOT_STEP_MINUTES
    same_day_buffer: int = SAME_DAY_BUFFER_MINUTES

    @property
    def today(self) -> datetime.date:
        return self.now.date()


class BookingFlow:
    def __init__(self, draft: BookingDraft):
        self.draft = draft

    # -- entry points -------------------------------------------------

    @classmethod
    def start_guided(cls, salon_id, via_assistant=False):
        return cls(BookingDraft(salon_id=salon_id, via_assistant=bool(via_assistant)))

    @classmethod
    def start_manual(cls, ctx: BookingContext, client_id, professional_id=None, on_date=None):
        if not client_id:
            raise ValidationError("Choose the client for this appointment")
        draft = BookingDraft(
            salon_id=ctx.salon.id,
            mode=EntryMode.MANUAL,
            state=BookingState.SERVICE_SELECTION,
            entry_state=BookingState.SERVICE_SELECTION,
            identity_step=IdentityStep.DONE,
            client_id=client_id,
        )
        flow = cls(draft)
        if professional_id is not None:
            flow._professional(ctx, professional_id)
            draft.professional_id = professional_id
        if on_date is not None:
            if draft.professional_id is None:
                raise ValidationError("Pick a professional before pre-selecting a date")
            day = _parse_date(on_date)
            if day < ctx.today or flow.window(ctx, day).closed:
                raise ValidationError("The salon is closed on that date")
            draft.date = day.isoformat()
        return flow

    @classmethod
    def start_reschedule(cls, ctx: BookingContext, appointment, on_date, time, professional_id=None):
        start = parse_time_of_day(time)
        if start is None or start >= MINUTES_PER_DAY:
            raise ValidationError("Time must be HH:MM between 00:00 and 23:59")
        draft = BookingDraft(
            salon_id=appointment.salon_id,
            mode=EntryMode.RESCHEDULE,
            state=BookingState.REVIEW_CONFIRM,
            entry_state=BookingState.REVIEW_CONFIRM,
            identity_step=IdentityStep.DONE,
            client_id=appointment.client_id,
            professional_id=professional_id or appointment.professional_id,
            date=_parse_date(on_date).isoformat(),
            time=format_time_of_day(start),
            duration_min=appointment.duration_min,
            appointment_id=appointment.id,
        )
        return cls(draft)

    # -- helpers ------------------------------------------------------

    def _require(self, *states):
        if self.draft.state not in states:
            raise InvalidTransitionError(
                f"Not available while in {self.draft.state.value}", state=self.draft.state.value
            )

    def _require_step(self, *steps):
        self._require(BookingState.IDENTITY_CHECK)
        if self.draft.identity_step not in steps:
            raise InvalidTransitionError(
                f"Not expected at identity step {self.draft.identity_step.value}",
                step=self.draft.identity_step.value,
            )

    def _professional(self, ctx, professional_id):
        for professional in ctx.salon.professionals:
            if professional.id == professional_id and professional.status == "active":
                return professional
        raise NotFoundError("Professional not found", professional_id=professional_id)

    def selected_services(self, ctx):
        catalog = {s.id: s for s in ctx.salon.services}
        missing = [sid for sid in self.draft.service_ids if sid not in catalog]
        if missing:
            raise NotFoundError("Service no longer offered", service_ids=missing)
        return [catalog[sid] for sid in self.draft.service_ids]

    def selected_products(self, ctx):
        catalog = {p.id: p for p in ctx.salon.products}
        missing = [pid for pid in self.draft.product_ids if pid not in catalog]
        if missing:
            raise NotFoundError("Product no longer offered", product_ids=missing)
        return [catalog[pid] for pid in self.draft.product_ids]

    def total_duration(self, ctx) -> int:
        if self.draft.duration_min:
            return self.draft.duration_min
        return sum(int(s.duration_min) for s in self.selected_services(ctx))

    def window(self, ctx, day: datetime.date) -> DayWindow:
        professional = None
        if self.draft.professional_id is not None:
            professional = self._professional(ctx, self.draft.professional_id)
        return window_for(ctx.salon, professional, day)

    def offered_dates(self, ctx) -> List[datetime.date]:
        return bookable_dates(ctx.today, ctx.window_days, lambda day: self.window(ctx, day))

    def available_slots(self, ctx) -> List[str]:
        day = self.draft.on_date
        if day is None or self.draft.professional_id is None:
            return []
        cutoff = None
        if day == ctx.today:
            cutoff = ctx.now.hour * 60 + ctx.now.minute
        return generate_slots(
            self.window(ctx, day),
            ctx.store.bookings_for(self.draft.professional_id, day),
            self.total_duration(ctx),
            self.draft.professional_id,
            day,
            now_cutoff=cutoff,
            step=ctx.slot_step,
            buffer=ctx.same_day_buffer,
        )

    def quote(self, ctx):
        self.draft.discount_percent = promo_discount_percent(
            ctx.salon, ctx.now, self.draft.via_assistant, ctx.promo_verified
        )
        return quote(
            self.selected_services(ctx),
            self.selected_products(ctx),
            discount_percent=self.draft.discount_percent,
            tax_rate=ctx.tax_rate,
        )

    def actions(self):
        state = self.draft.state
        if state == BookingState.TERMINAL_SUCCESS:
            return []
        if state == BookingState.PAYMENT:
            return ["poll", "abandon"]
        actions = []
        if state == BookingState.REVIEW_CONFIRM:
            actions.append("confirm")
        elif state != BookingState.IDENTITY_CHECK:
            actions.append("advance")
        if self._can_go_back():
            actions.append("back")
        actions.append("abandon")
        return actions

    def _can_go_back(self):
        state = self.draft.state
        if state in (BookingState.PAYMENT, BookingState.TERMINAL_SUCCESS):
            return False
        if state == BookingState.IDENTITY_CHECK:
            return self.draft.identity_step != IdentityStep.CONTACT
        return state != self.draft.entry_state

    # -- identity -----------------------------------------------------

    def submit_contact(self, ctx, contact: str):
        self._require_step(IdentityStep.CONTACT)
        kind, value = ctx.identity.parse_contact(contact)
        account = ctx.identity.lookup_by_contact(contact)
        self.draft.notice = None

        if account is not None:
            self.draft.email = account.email
            self.draft.full_name = account.full_name
            self.draft.identity_step = IdentityStep.CREDENTIAL
        elif kind == "email":
            self.draft.email = value
            self.draft.identity_step = IdentityStep.NAME
        else:
            # a phone we don't know can't tell new from existing; ask for the email
            self.draft.phone = value
            self.draft.identity_step = IdentityStep.EMAIL
        return self

    def submit_email(self, ctx, email: str):
        self._require_step(IdentityStep.EMAIL)
        email = ctx.identity.normalize_email(email)
        account = ctx.identity.lookup_by_contact(email)
        self.draft.email = email
        if account is not None:
            self.draft.full_name = account.full_name
            self.draft.identity_step = IdentityStep.CREDENTIAL
        else:
            self.draft.identity_step = IdentityStep.NAME
        return self

    def submit_name(self, ctx, name: str):
        self._require_step(IdentityStep.NAME)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Tell us your full name")
        self.draft.full_name = name
        self.draft.identity_step = IdentityStep.REGISTER_PASSWORD
        return self

    def register(self, ctx, password: str, confirmation: str):
        self._require_step(IdentityStep.REGISTER_PASSWORD)
        if password != confirmation:
            raise ValidationError("Passwords do not match")
        try:
            account = ctx.identity.sign_up(
                self.draft.email, password, self.draft.full_name, phone=self.draft.phone
            )
        except ctx.identity.AlreadyRegisteredError:
            self.draft.identity_step = IdentityStep.CREDENTIAL
            self.draft.notice = "already_registered"
            return self
        self._authenticated(account)
        return self

    def submit_password(self, ctx, password: str):
        self._require_step(IdentityStep.CREDENTIAL)
        try:
            account = ctx.identity.sign_in(self.draft.email, password)
        except ctx.identity.InvalidCredentialsError:
            raise ValidationError("Incorrect password, try again")
        self._authenticated(account)
        return self

    def _authenticated(self, account):
        self.draft.client_id = account.id
        self.draft.email = account.email
        self.draft.full_name = account.full_name or self.draft.full_name
        self.draft.identity_step = IdentityStep.DONE
        self.draft.notice = None
        self.draft.state = BookingState.SERVICE_SELECTION

    # -- selections ---------------------------------------------------

    def toggle_service(self, ctx, service_id):
        self._require(BookingState.SERVICE_SELECTION)
        if service_id not in {s.id for s in ctx.salon.services}:
            raise NotFoundError("Service not found", service_id=service_id)
        if service_id in self.draft.service_ids:
            self.draft.service_ids.remove(service_id)
        else:
            self.draft.service_ids.append(service_id)
        return self

    def toggle_product(self, ctx, product_id):
        self._require(BookingState.SERVICE_SELECTION)
        catalog = {p.id: p for p in ctx.salon.products}
        if product_id not in catalog:
            raise NotFoundError("Product not found", product_id=product_id)
        if product_id in self.draft.product_ids:
            self.draft.product_ids.remove(product_id)
        else:
            if (catalog[product_id].stock or 0) <= 0:
                raise ValidationError("Product is out of stock")
            self.draft.product_ids.append(product_id)
        return self

    def select_professional(self, ctx, professional_id):
        self._require(BookingState.PROFESSIONAL_SELECTION)
        self._professional(ctx, professional_id)
        self.draft.professional_id = professional_id
        self.draft.state = BookingState.DATE_SELECTION
        return self

    def select_date(self, ctx, value):
        self._require(BookingState.DATE_SELECTION)
        day = _parse_date(value)
        if day not in self.offered_dates(ctx):
            raise ValidationError("That date is not available", date=day.isoformat())
        self.draft.date = day.isoformat()
        self.draft.state = BookingState.TIME_SELECTION
        return self

    def select_time(self, ctx, value):
        self._require(BookingState.TIME_SELECTION)
        start = parse_time_of_day(value)
        if start is None:
            raise ValidationError("Time must be HH:MM")
        label = format_time_of_day(start)
        slots = self.available_slots(ctx)
        if label not in slots:
            raise ConflictError("Slot no longer available, choose another", slots=slots)
        self.draft.time = label
        self.draft.state = BookingState.REVIEW_CONFIRM
        return self

    def advance(self, ctx):
        state = self.draft.state
        if state == BookingState.SERVICE_SELECTION:
            if not self.draft.service_ids:
                raise ValidationError("Select at least one service")
            self.selected_services(ctx)
            self.draft.state = BookingState.PROFESSIONAL_SELECTION
            if self.draft.mode == EntryMode.MANUAL and self.draft.professional_id is not None:
                self.draft.state = BookingState.DATE_SELECTION
                if self.draft.date is not None:
                    self.draft.state = BookingState.TIME_SELECTION
        elif state == BookingState.PROFESSIONAL_SELECTION:
            if self.draft.professional_id is None:
                raise ValidationError("Choose a professional")
            self.draft.state = BookingState.DATE_SELECTION
        elif state == BookingState.DATE_SELECTION:
            if self.draft.date is None:
                raise ValidationError("Choose a date")
            self.draft.state = BookingState.TIME_SELECTION
        elif state == BookingState.TIME_SELECTION:
            if self.draft.time is None:
                raise ValidationError("Choose a time")
            self.draft.state = BookingState.REVIEW_CONFIRM
        else:
            raise InvalidTransitionError(f"Cannot advance from {state.value}", state=state.value)
        return self

    def back(self, ctx=None):
        if not self._can_go_back():
            raise InvalidTransitionError(
                f"Cannot go back from {self.draft.state.value}", state=self.draft.state.value
            )
        draft = self.draft
        state = draft.state

        if state == BookingState.IDENTITY_CHECK:
            draft.identity_step = IdentityStep.CONTACT
            draft.phone = draft.email = draft.full_name = None
            draft.notice = None
            return self

        if state == BookingState.SERVICE_SELECTION:
            draft.service_ids = []
            draft.product_ids = []
            # contact details stay; the password is asked again before services
            draft.client_id = None
            draft.identity_step = IdentityStep.CREDENTIAL
        elif state == BookingState.PROFESSIONAL_SELECTION:
            draft.professional_id = None
        elif state == BookingState.DATE_SELECTION:
            draft.date = None
        elif state == BookingState.TIME_SELECTION:
            draft.time = None

        draft.state = STATE_ORDER[STATE_ORDER.index(state) - 1]
        return self

    # -- confirmation -------------------------------------------------

    def review(self, ctx):
        self._require(BookingState.REVIEW_CONFIRM)
        summary = {
            "date": self.draft.date,
            "time": self.draft.time,
            "professional_id": self.draft.professional_id,
        }
        if self.draft.professional_id is not None:
            summary["professional_name"] = self._professional(ctx, self.draft.professional_id).name
        if self.draft.mode == EntryMode.RESCHEDULE:
            summary["duration_min"] = self.draft.duration_min
            return summary
        summary["services"] = [s.name for s in self.selected_services(ctx)]
        summary["products"] = [p.name for p in self.selected_products(ctx)]
        summary["quote"] = self.quote(ctx).to_dict()
        return summary

    def confirm(self, ctx, payment_method=None, card_token=None):
        """Persist the booking.

        Pay-on-site salons (and staff entries) get a confirmed appointment
        straight away. With a gateway the appointment is written as pending
        first and removed again if the charge fails.
        """
        self._require(BookingState.REVIEW_CONFIRM)
        draft = self.draft
        start = parse_time_of_day(draft.time)

        if draft.mode == EntryMode.RESCHEDULE:
            ctx.store.reschedule(
                draft.appointment_id, draft.on_date, start, professional_id=draft.professional_id
            )
            draft.state = BookingState.TERMINAL_SUCCESS
            return self

        if draft.client_id is None:
            raise ValidationError("Sign in before confirming")

        services = self.selected_services(ctx)
        if not services:
            raise ValidationError("Select at least one service")
        priced = self.quote(ctx)
        charge = draft.mode == EntryMode.GUIDED and ctx.gateway is not None and priced.total > 0
        if charge and not payment_method:
            raise ValidationError("Choose a payment method")

        try:
            appointment = ctx.store.create_appointment(
                salon_id=draft.salon_id,
                client_id=draft.client_id,
                professional_id=draft.professional_id,
                on_date=draft.on_date,
                start=start,
                duration=priced.duration_min,
                service_names=", ".join(s.name for s in services),
                valor=priced.total,
                status=lifecycle.PENDING if charge else lifecycle.CONFIRMED,
                booked_by_ai=draft.via_assistant,
            )
        except ConflictError:
            draft.time = None
            draft.state = BookingState.TIME_SELECTION
            raise

        draft.appointment_id = appointment.id
        if not charge:
            draft.state = BookingState.TERMINAL_SUCCESS
            return self

        draft.state = BookingState.PAYMENT
        try:
            result = ctx.gateway.create_order(
                amount=priced.total,
                payer_email=draft.email,
                external_reference=appointment.id,
                method=payment_method,
                card_token=card_token,
                metadata={"salon_id": draft.salon_id},
            )
        except BookingError:
            self._payment_failed(ctx)
            raise
        except Exception as e:
            self._payment_failed(ctx)
            raise ExternalServiceError("Payment could not be started, try again") from e

        return self._apply_payment_result(ctx, result)

    def _apply_payment_result(self, ctx, result):
        draft = self.draft
        if result.approved:
            ctx.store.confirm_payment(draft.appointment_id, result.payment_id, result.method)
            draft.payment = result.presentation()
            draft.state = BookingState.TERMINAL_SUCCESS
            return self
        if result.awaiting:
            ctx.store.attach_payment(draft.appointment_id, result.payment_id, result.method)
            draft.payment = result.presentation()
            return self

        self._payment_failed(ctx)
        raise PaymentDeclinedError("Payment was not approved", status=result.status)

    def _payment_failed(self, ctx):
        ctx.store.discard_pending(self.draft.appointment_id)
        self.draft.appointment_id = None
        self.draft.payment = None
        self.draft.state = BookingState.REVIEW_CONFIRM

    def poll_payment(self, ctx):
        self._require(BookingState.PAYMENT)
        appointment = ctx.store.get_appointment(self.draft.appointment_id)
        if appointment.status == lifecycle.CONFIRMED:
            self.draft.state = BookingState.TERMINAL_SUCCESS
            return self
        if ctx.gateway is None or not self.draft.payment:
            return self
        result = ctx.gateway.check_status(self.draft.payment["payment_id"])
        return self._apply_payment_result(ctx, result)

    def abandon(self, ctx):
        """Drop the session; a pending appointment left behind by a payment is removed."""
        if self.draft.state == BookingState.PAYMENT and self.draft.appointment_id is not None:
            ctx.store.discard_pending(self.draft.appointment_id)
            self.draft.appointment_id = None

    # -- presentation -------------------------------------------------

    def snapshot(self, ctx):
        state = self.draft.state
        data = {
            "state": state.value,
            "identity_step": self.draft.identity_step.value,
            "actions": self.actions(),
            "draft": self.draft.to_dict(),
        }
        if state == BookingState.SERVICE_SELECTION:
            data["services"] = [
                {
                    "id": s.id,
                    "name": s.name,
                    "price": str(s.price),
                    "duration_min": s.duration_min,
                    "selected": s.id in self.draft.service_ids,
                }
                for s in ctx.salon.services
            ]
        elif state == BookingState.PROFESSIONAL_SELECTION:
            data["professionals"] = [
                {"id": p.id, "name": p.name, "role": p.role}
                for p in ctx.salon.professionals
                if p.status == "active"
            ]
        elif state == BookingState.DATE_SELECTION:
            data["dates"] = [d.isoformat() for d in self.offered_dates(ctx)]
        elif state == BookingState.TIME_SELECTION:
            data["slots"] = self.available_slots(ctx)
        elif state == BookingState.REVIEW_CONFIRM:
            data["summary"] = self.review(ctx)
        if self.draft.service_ids and self.draft.mode != EntryMode.RESCHEDULE:
            data["quote"] = self.quote(ctx).to_dict()
        return data


def _parse_date(value) -> datetime.date:
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError("Date must be YYYY-MM-DD")
