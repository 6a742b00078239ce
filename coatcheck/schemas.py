from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

from coatcheck.models import CoatingType, EstimateStatus, InventoryCategory, JobStatus, ServiceCategory, UserRole

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _require_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError('must not be blank')
    return value


def _check_email(value: str | None) -> str | None:
    value = _clean_optional(value)
    if value and not EMAIL_RE.match(value):
        raise ValueError('must be a valid email address')
    return value


def _check_money(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    if value < 0:
        raise ValueError('must not be negative')
    return value.quantize(Decimal('0.01'))


def _check_stock(value: Decimal | None) -> Decimal | None:
    if value is not None and value < 0:
        raise ValueError('must not be negative')
    return value


def _check_positive(value: Decimal) -> Decimal:
    if value <= 0:
        raise ValueError('must be greater than zero')
    return value


RequiredText = Annotated[str, AfterValidator(_require_text)]
OptionalText = Annotated[str | None, AfterValidator(_clean_optional)]
Email = Annotated[str | None, AfterValidator(_check_email)]
MoneyIn = Annotated[Decimal, AfterValidator(_check_money)]
StockIn = Annotated[Decimal, AfterValidator(_check_stock)]

Money = Annotated[Decimal, PlainSerializer(lambda value: f'{value:.2f}', return_type=str)]
Quantity = Annotated[Decimal, PlainSerializer(lambda value: f'{value.normalize():f}', return_type=str)]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Customers


class CustomerCreate(ApiModel):
    name: RequiredText
    email: Email = None
    phone: OptionalText = None
    address: OptionalText = None


class CustomerUpdate(ApiModel):
    name: RequiredText | None = None
    email: Email = None
    phone: OptionalText = None
    address: OptionalText = None


class CustomerOut(ApiModel):
    id: str
    name: str
    email: str | None
    phone: str | None
    address: str | None
    created_at: datetime


# Services


class ServiceCreate(ApiModel):
    name: RequiredText
    category: ServiceCategory
    price: MoneyIn = Decimal('0.00')


class ServiceUpdate(ApiModel):
    name: RequiredText | None = None
    category: ServiceCategory | None = None
    price: MoneyIn | None = None


class ServiceOut(ApiModel):
    id: str
    name: str
    category: str
    price: Money
    created_at: datetime


class ServiceLineOut(ApiModel):
    id: str
    service_id: str | None
    service_name: str
    service_price: Money
    quantity: int


# Jobs


class InventoryUsageIn(ApiModel):
    inventory_item_id: RequiredText
    quantity: Annotated[Decimal, AfterValidator(_check_positive)]


class InventoryUsageOut(ApiModel):
    id: str
    inventory_item_id: str | None
    item_name: str
    quantity: Quantity


class JobCreate(ApiModel):
    customer_id: OptionalText = None
    customer_name: OptionalText = None
    customer_email: Email = None
    phone_number: OptionalText = None
    received_date: datetime | None = None
    coating_type: CoatingType = CoatingType.POWDER
    items: OptionalText = None
    detailed_notes: OptionalText = None
    price: MoneyIn | None = None
    status: JobStatus = JobStatus.RECEIVED
    service_ids: list[str] = Field(default_factory=list)
    inventory_items: list[InventoryUsageIn] = Field(default_factory=list)


class JobUpdate(ApiModel):
    customer_id: OptionalText = None
    phone_number: OptionalText = None
    received_date: datetime | None = None
    coating_type: CoatingType | None = None
    items: OptionalText = None
    detailed_notes: OptionalText = None
    price: MoneyIn | None = None
    status: JobStatus | None = None
    service_ids: list[str] | None = None
    inventory_items: list[InventoryUsageIn] | None = None


class JobOut(ApiModel):
    id: str
    tracking_id: str
    customer_id: str | None
    customer_name: str
    customer_deleted: bool
    phone_number: str | None
    received_date: datetime
    coating_type: str
    items: str | None
    detailed_notes: str | None
    price: Money
    status: str
    completed_at: datetime | None
    created_at: datetime
    age_days: int
    age_label: str
    age_bucket: str
    is_completed: bool
    services: list[ServiceLineOut] = Field(default_factory=list)
    inventory_items: list[InventoryUsageOut] = Field(default_factory=list)


class JobBoardOut(ApiModel):
    active: list[JobOut]
    completed: list[JobOut]


# Estimates


class EstimateCreate(ApiModel):
    customer_name: RequiredText
    customer_phone: OptionalText = None
    date: datetime | None = None
    desired_finish_date: datetime | None = None
    notes: OptionalText = None
    total: MoneyIn | None = None
    status: EstimateStatus = EstimateStatus.DRAFT
    service_ids: list[str] = Field(default_factory=list)

    @field_validator('status')
    @classmethod
    def status_not_converted(cls, value: EstimateStatus) -> EstimateStatus:
        if value == EstimateStatus.CONVERTED:
            raise ValueError('converted is set by converting the estimate to a job')
        return value


class EstimateUpdate(ApiModel):
    customer_name: RequiredText | None = None
    customer_phone: OptionalText = None
    date: datetime | None = None
    desired_finish_date: datetime | None = None
    notes: OptionalText = None
    total: MoneyIn | None = None
    status: EstimateStatus | None = None
    service_ids: list[str] | None = None

    @field_validator('status')
    @classmethod
    def status_not_converted(cls, value: EstimateStatus | None) -> EstimateStatus | None:
        if value == EstimateStatus.CONVERTED:
            raise ValueError('converted is set by converting the estimate to a job')
        return value


class EstimateServiceAdd(ApiModel):
    service_id: RequiredText
    quantity: int = Field(default=1, ge=1)


class EstimateOut(ApiModel):
    id: str
    customer_name: str
    customer_phone: str | None
    service_type: str
    date: datetime
    desired_finish_date: datetime | None
    notes: str | None
    total: Money
    status: str
    converted_job_id: str | None
    created_at: datetime
    services: list[ServiceLineOut] = Field(default_factory=list)


# Notes


class NoteCreate(ApiModel):
    content: RequiredText
    job_id: OptionalText = None
    customer_id: OptionalText = None


class NoteOut(ApiModel):
    id: str
    job_id: str | None
    customer_id: str | None
    content: str
    author: str
    created_at: datetime


# Inventory


class InventoryCreate(ApiModel):
    name: RequiredText
    category: InventoryCategory = InventoryCategory.OFFICE_SUPPLIES
    description: OptionalText = None
    quantity: StockIn = Decimal('0')
    unit: RequiredText = 'pieces'
    price: MoneyIn = Decimal('0.00')


class InventoryUpdate(ApiModel):
    name: RequiredText | None = None
    category: InventoryCategory | None = None
    description: OptionalText = None
    quantity: StockIn | None = None
    unit: RequiredText | None = None
    price: MoneyIn | None = None


class InventoryOut(ApiModel):
    id: str
    name: str
    category: str
    description: str | None
    quantity: Quantity
    unit: str
    price: Money
    created_at: datetime


# Users


class UserCreate(ApiModel):
    username: RequiredText
    password: str = Field(min_length=8)
    role: UserRole = UserRole.EMPLOYEE
    email: Email = None
    first_name: OptionalText = None
    last_name: OptionalText = None


class UserUpdate(ApiModel):
    role: UserRole | None = None
    password: str | None = Field(default=None, min_length=8)
    email: Email = None
    first_name: OptionalText = None
    last_name: OptionalText = None


class UserOut(ApiModel):
    id: str
    username: str | None
    email: str | None
    first_name: str | None
    last_name: str | None
    profile_image_url: str | None
    role: str
    is_local_admin: int
    created_at: datetime


# Auth


class LoginRequest(ApiModel):
    username: str
    password: str


class SessionIdentityOut(ApiModel):
    id: str
    role: str
    level: str
    is_local_admin: bool
    capabilities: list[str]
    username: str | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None


class DashboardOut(ApiModel):
    total_jobs: int
    active_jobs: int
    completed_jobs: int
    jobs_by_status: dict[str, int]
    jobs_by_coating_type: dict[str, int]
    paid_revenue: Money
    open_estimates: int
    customers: int
