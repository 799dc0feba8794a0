import re
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from payments_api.domain.payments import statuses

CPF_RE = re.compile(r"^\d{11}$")
PHONE_RE = re.compile(r"^\d{10,11}$")


class PaymentCreateRequest(BaseModel):
    nome: str = Field(min_length=2, max_length=255)
    cpf: str
    email: EmailStr = Field(max_length=255)
    telefone: str
    payment_method: str = Field(alias="paymentMethod")
    plan_type: str = Field(alias="planType")
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("nome")
    @classmethod
    def strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if len(stripped) < 2:
            raise ValueError("Nome deve ter pelo menos 2 caracteres")
        return stripped

    @field_validator("cpf")
    @classmethod
    def validate_cpf(cls, value: str) -> str:
        if not CPF_RE.match(value):
            raise ValueError("CPF deve conter exatamente 11 dígitos")
        return value

    @field_validator("telefone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        if not PHONE_RE.match(value):
            raise ValueError("Telefone deve conter entre 10 e 11 dígitos numéricos")
        return value

    @field_validator("payment_method")
    @classmethod
    def validate_payment_method(cls, value: str) -> str:
        if value not in statuses.PAYMENT_METHODS:
            raise ValueError("Método de pagamento deve ser PIX ou CREDIT_CARD")
        return value

    @field_validator("plan_type")
    @classmethod
    def validate_plan_type(cls, value: str) -> str:
        if value not in statuses.PLAN_TYPES:
            raise ValueError("Tipo do plano deve ser ESSENCIAL ou COMPLETO")
        return value


class PixDetails(BaseModel):
    qr_code: str | None = Field(None, serialization_alias="qrCode")
    qr_code_image: str | None = Field(None, serialization_alias="qrCodeImage")
    expiration_date: str | None = Field(None, serialization_alias="expirationDate")


class CreditCardDetails(BaseModel):
    invoice_url: str | None = Field(None, serialization_alias="invoiceUrl")
    bank_slip_url: str | None = Field(None, serialization_alias="bankSlipUrl")


class PaymentCreateResponse(BaseModel):
    success: bool = True
    payment_id: int = Field(serialization_alias="paymentId")
    gateway_payment_id: str = Field(serialization_alias="gatewayPaymentId")
    status: str
    value: float
    due_date: date | None = Field(None, serialization_alias="dueDate")
    invoice_url: str | None = Field(None, serialization_alias="invoiceUrl")
    pix: PixDetails | None = None
    credit_card: CreditCardDetails | None = Field(None, serialization_alias="creditCard")


class CustomerSummary(BaseModel):
    nome: str
    email: str
    cpf: str


class PaymentStatusResponse(BaseModel):
    id: int
    gateway_payment_id: str = Field(serialization_alias="gatewayPaymentId")
    status: str
    value: float
    payment_method: str = Field(serialization_alias="paymentMethod")
    plan_type: str = Field(serialization_alias="planType")
    customer: CustomerSummary
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")
    invoice_url: str | None = Field(None, serialization_alias="invoiceUrl")
    pix: PixDetails | None = None


class PaymentListItem(BaseModel):
    id: int
    gateway_payment_id: str = Field(serialization_alias="gatewayPaymentId")
    status: str
    value: float
    payment_method: str = Field(serialization_alias="paymentMethod")
    plan_type: str = Field(serialization_alias="planType")
    external_reference: str | None = Field(None, serialization_alias="externalReference")
    due_date: date | None = Field(None, serialization_alias="dueDate")
    payment_date: datetime | None = Field(None, serialization_alias="paymentDate")
    customer: CustomerSummary
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int = Field(serialization_alias="totalPages")
    has_next: bool = Field(serialization_alias="hasNext")
    has_prev: bool = Field(serialization_alias="hasPrev")


class PaymentListResponse(BaseModel):
    payments: list[PaymentListItem]
    pagination: Pagination
