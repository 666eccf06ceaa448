"""
REST API for the lending circle engine

Thin FastAPI layer over LoanManager and LoanReporting. The caller is already
authenticated upstream and identified by the X-Actor-Id and X-Actor-Role
headers. Domain errors map onto HTTP status codes.
"""

from decimal import Decimal
from datetime import date
from dataclasses import asdict
from typing import List, Optional

from fastapi import FastAPI, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from .access import UserRole
from .amortization import LoanType, PaymentFrequency
from .capital import CapitalLedger
from .config import get_config
from .currency import Currency, to_decimal
from .exceptions import LendingCircleError, NotFoundError, ForbiddenError, BadRequestError
from .groups import GroupManager
from .loans import GuaranteeType, LoanManager, LoanRequest, LoanUpdate
from .logging_config import setup_logging, get_logger
from .reporting import LoanReporting
from .storage import create_storage, to_storage_value
from .validation import PaymentValidator


class Actor(BaseModel):
    id: str
    role: str


class CreateGroupRequest(BaseModel):
    name: str
    initial_capital: str = Field(..., description="Decimal amount as string")
    currency: Optional[str] = None
    member_ids: List[str] = []


class AddMemberRequest(BaseModel):
    user_id: str


class CreateLoanRequest(BaseModel):
    group_id: str
    member_id: str
    amount: str = Field(..., description="Decimal amount as string")
    periodic_rate: str = Field(..., description="Rate per period, e.g. '0.02'")
    term: int
    loan_type: LoanType
    payment_frequency: PaymentFrequency
    request_date: date
    reason: str = ""
    guarantor_id: Optional[str] = None
    guarantee_type: GuaranteeType = GuaranteeType.NONE
    guarantee_detail: str = ""
    form_purchased: bool = False
    form_cost: str = "0"

    def to_loan_request(self) -> LoanRequest:
        return LoanRequest(
            group_id=self.group_id,
            member_id=self.member_id,
            amount=to_decimal(self.amount),
            periodic_rate=to_decimal(self.periodic_rate),
            term=self.term,
            loan_type=self.loan_type,
            payment_frequency=self.payment_frequency,
            request_date=self.request_date,
            reason=self.reason,
            guarantor_id=self.guarantor_id,
            guarantee_type=self.guarantee_type,
            guarantee_detail=self.guarantee_detail,
            form_purchased=self.form_purchased,
            form_cost=to_decimal(self.form_cost)
        )


class UpdateLoanRequest(BaseModel):
    description: Optional[str] = None
    rejected: Optional[bool] = None
    rejection_reason: Optional[str] = None


class PaymentRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    payment_date: Optional[date] = None


def get_actor(
    x_actor_id: str = Header(...),
    x_actor_role: str = Header(...)
) -> Actor:
    return Actor(id=x_actor_id, role=x_actor_role)


def _parse_amount(value: str) -> Decimal:
    try:
        return to_decimal(value)
    except ValueError as e:
        raise BadRequestError(str(e))


def create_app(
    group_manager: GroupManager,
    loan_manager: LoanManager,
    reporting: Optional[LoanReporting] = None
) -> FastAPI:
    """
    Build the API around already wired managers

    Args:
        group_manager: Group store
        loan_manager: Loan engine
        reporting: Report builder, created from the loan manager if omitted
    """
    reporting = reporting or LoanReporting(loan_manager)
    logger = get_logger("lending_circle.api")

    app = FastAPI(
        title="Lending Circle API",
        description="Loans, payments and capital pools for lending circles",
        version="1.0.0"
    )

    @app.exception_handler(LendingCircleError)
    async def handle_domain_error(request: Request, exc: LendingCircleError):
        if isinstance(exc, NotFoundError):
            status_code = status.HTTP_404_NOT_FOUND
        elif isinstance(exc, ForbiddenError):
            status_code = status.HTTP_403_FORBIDDEN
        elif isinstance(exc, BadRequestError):
            status_code = status.HTTP_400_BAD_REQUEST
        else:
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    @app.post("/groups", status_code=status.HTTP_201_CREATED)
    async def create_group(request: CreateGroupRequest, actor: Actor = Depends(get_actor)):
        """Create a group; the caller becomes its facilitator"""
        try:
            currency = Currency[request.currency or get_config().default_currency]
        except KeyError:
            raise BadRequestError(f"Unsupported currency: {request.currency}")

        group = group_manager.create_group(
            name=request.name,
            created_by_id=actor.id,
            initial_capital=_parse_amount(request.initial_capital),
            currency=currency,
            member_ids=request.member_ids
        )
        return group.to_dict()

    @app.post("/groups/{group_id}/members")
    async def add_member(group_id: str, request: AddMemberRequest, actor: Actor = Depends(get_actor)):
        group = group_manager.require_group(group_id)
        loan_manager.access_policy.require_manage_group(
            actor.id, UserRole.coerce(actor.role), group, "You do not have permission to manage this group"
        )
        return group_manager.add_member(group_id, request.user_id).to_dict()

    @app.get("/groups/{group_id}/loans")
    async def list_group_loans(group_id: str, actor: Actor = Depends(get_actor)):
        loans = loan_manager.find_by_group(group_id, actor.id, actor.role)
        return [loan.to_dict() for loan in loans]

    @app.get("/groups/{group_id}/payments")
    async def group_payment_history(group_id: str, actor: Actor = Depends(get_actor)):
        entries = reporting.get_group_payment_history(group_id, actor.id, actor.role)
        return [to_storage_value(asdict(entry)) for entry in entries]

    @app.get("/groups/{group_id}/summary")
    async def group_summary(group_id: str, as_of: Optional[date] = None, actor: Actor = Depends(get_actor)):
        summary = reporting.get_group_loan_summary(group_id, actor.id, actor.role, as_of)
        return to_storage_value(asdict(summary))

    @app.get("/members/{member_id}/loans")
    async def list_member_loans(member_id: str, actor: Actor = Depends(get_actor)):
        loans = loan_manager.find_by_member(member_id, actor.id, actor.role)
        return [loan.to_dict() for loan in loans]

    @app.get("/members/{member_id}/payments")
    async def member_payment_history(member_id: str, actor: Actor = Depends(get_actor)):
        entries = reporting.get_member_payment_history(member_id, actor.id, actor.role)
        return [to_storage_value(asdict(entry)) for entry in entries]

    @app.post("/loans", status_code=status.HTTP_201_CREATED)
    async def create_loan(request: CreateLoanRequest, actor: Actor = Depends(get_actor)):
        """Originate a loan with its schedule"""
        try:
            loan_request = request.to_loan_request()
        except ValueError as e:
            raise BadRequestError(str(e))

        created = loan_manager.create_loan(loan_request, actor.id, actor.role)
        return {
            "loan": created.loan.to_dict(),
            "schedule": [item.to_dict() for item in created.schedule],
            "movement": created.movement.to_dict()
        }

    @app.get("/loans/{loan_id}")
    async def get_loan(loan_id: str, actor: Actor = Depends(get_actor)):
        return loan_manager.get_loan(loan_id, actor.id, actor.role).to_dict()

    @app.patch("/loans/{loan_id}")
    async def update_loan(loan_id: str, request: UpdateLoanRequest, actor: Actor = Depends(get_actor)):
        changes = LoanUpdate(
            description=request.description,
            rejected=request.rejected,
            rejection_reason=request.rejection_reason
        )
        return loan_manager.update_loan(loan_id, changes, actor.id, actor.role).to_dict()

    @app.delete("/loans/{loan_id}")
    async def delete_loan(loan_id: str, actor: Actor = Depends(get_actor)):
        summary = loan_manager.delete_loan(loan_id, actor.id, actor.role)
        return {"message": "Loan deleted successfully", "details": to_storage_value(asdict(summary))}

    @app.get("/loans/{loan_id}/schedule")
    async def get_schedule(loan_id: str, as_of: Optional[date] = None, actor: Actor = Depends(get_actor)):
        as_of = as_of or date.today()
        schedule = loan_manager.get_schedule(loan_id, actor.id, actor.role)
        result = []
        for item in schedule:
            data = item.to_dict()
            data['status'] = item.status_as_of(as_of).value
            result.append(data)
        return result

    @app.post("/loans/{loan_id}/payments", status_code=status.HTTP_201_CREATED)
    async def record_payment(loan_id: str, request: PaymentRequest, actor: Actor = Depends(get_actor)):
        payment = loan_manager.record_payment(
            loan_id, _parse_amount(request.amount), actor.id, actor.role, request.payment_date
        )
        return payment.to_dict()

    @app.post("/loans/{loan_id}/payments/validate")
    async def validate_payment(loan_id: str, request: PaymentRequest, actor: Actor = Depends(get_actor)):
        loan_manager.validate_payment(loan_id, _parse_amount(request.amount), actor.id, actor.role)
        return {"valid": True}

    @app.get("/loans/{loan_id}/payments")
    async def payment_history(loan_id: str, actor: Actor = Depends(get_actor)):
        payments = reporting.get_payment_history(loan_id, actor.id, actor.role)
        return [payment.to_dict() for payment in payments]

    @app.delete("/payments/{payment_id}")
    async def delete_payment(payment_id: str, actor: Actor = Depends(get_actor)):
        summary = loan_manager.delete_payment(payment_id, actor.id, actor.role)
        return {"message": "Payment deleted successfully", "details": to_storage_value(asdict(summary))}

    @app.get("/loans/{loan_id}/remaining")
    async def remaining_payments(loan_id: str, as_of: Optional[date] = None, actor: Actor = Depends(get_actor)):
        remaining = reporting.get_remaining_payments(loan_id, actor.id, actor.role, as_of)
        return to_storage_value(asdict(remaining))

    @app.get("/loans/{loan_id}/analytics")
    async def loan_analytics(loan_id: str, as_of: Optional[date] = None, actor: Actor = Depends(get_actor)):
        analytics = reporting.get_loan_analytics(loan_id, actor.id, actor.role, as_of)
        return to_storage_value(asdict(analytics))

    return app


def build_app() -> FastAPI:
    """Wire storage and managers from configuration"""
    config = get_config()
    setup_logging(level=config.log_level, log_format=config.log_format, log_file=config.log_file)

    storage = create_storage(config.database_url)
    group_manager = GroupManager(storage)
    loan_manager = LoanManager(
        storage,
        group_manager,
        capital_ledger=CapitalLedger(storage, group_manager),
        validator=PaymentValidator(enforce_upper_bound=config.enforce_payment_upper_bound)
    )
    return create_app(group_manager, loan_manager)


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "lending_circle.api:build_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level="info"
    )
