"""Provider-independent catalogue of the tools the model may call.

Each tool is declared once here. Provider strategies render the
declarations in their own wire format, and :meth:`ToolRegistry.execute` runs
the bound adapter operation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

from ..adapters import pricing
from ..adapters.appointments import AppointmentScheduler, day_name, parse_day
from ..adapters.customers import CustomerResolver
from ..adapters.orders import WorkOrderCreator
from ..adapters.vehicles import VehicleRegistry
from ..conversations.service import MessageStoreGateway
from ..core.settings import BotSettings, get_bot_settings
from ..errors import AdapterError
from . import schemas

logger = logging.getLogger(__name__)

PHONE_ARGUMENT = "customer_phone"

# Tools hidden unless the tenant flag is set. Hidden tools are neither
# declared to the model nor executable.
CAPABILITY_FLAGS: Mapping[str, str] = {
    "create_appointment_request": "auto_schedule_appointments",
    "create_work_order": "auto_create_orders",
}


# ---------------------------------------------------------------------------
# Argument models


class GetServicesInfoArgs(BaseModel):
    service_name: Optional[str] = Field(
        default=None, description="Optional service name to filter the catalogue"
    )


class CheckAvailabilityArgs(BaseModel):
    date: str = Field(description="Day to check, YYYY-MM-DD")


class CreateAppointmentArgs(BaseModel):
    service_type: str = Field(description="Requested service, as named in the catalogue")
    vehicle_description: str = Field(description="Make, model and year of the vehicle")
    date: str = Field(description="Appointment day, YYYY-MM-DD")
    time: str = Field(description="Start time, HH:MM (24h)")
    customer_name: Optional[str] = Field(default=None, description="Customer full name")
    notes: Optional[str] = Field(default=None, description="Extra details for the workshop")
    customer_phone: str


class GetServicePriceArgs(BaseModel):
    service_name: str = Field(description="Service to price")


class CreateQuoteArgs(BaseModel):
    customer_name: str = Field(description="Name to put on the quote")
    services: list[str] = Field(min_length=1, description="Names of the services to quote")
    vehicle: Optional[str] = Field(default=None, description="Vehicle description")


class CreateWorkOrderArgs(BaseModel):
    service_name: str = Field(description="Service the customer wants done")
    vehicle_description: Optional[str] = Field(default=None, description="Vehicle description")
    customer_name: Optional[str] = Field(default=None, description="Customer full name")
    notes: Optional[str] = Field(default=None, description="Details of the problem")
    customer_phone: str


class EscalateArgs(BaseModel):
    reason: str = Field(description="Why a human should take over")


# ---------------------------------------------------------------------------
# Registry


@dataclass
class ToolServices:
    """Adapters the tool handlers call into."""

    customers: CustomerResolver
    vehicles: VehicleRegistry
    scheduler: AppointmentScheduler
    orders: WorkOrderCreator
    conversations: Optional[MessageStoreGateway] = None


@dataclass
class ToolContext:
    """Per-turn facts every handler may rely on."""

    tenant_id: UUID
    conversation_id: UUID
    customer_phone: str
    config: schemas.TenantAgentConfig
    customer_name: Optional[str] = None
    escalated: bool = False


Handler = Callable[[BaseModel, ToolContext, ToolServices, BotSettings], Any]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: type[BaseModel]
    handler: Handler
    needs_phone: bool = False

    def parameters(self) -> dict[str, Any]:
        """JSON schema of the arguments the model supplies."""

        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        properties = dict(schema.get("properties", {}))
        properties.pop(PHONE_ARGUMENT, None)
        schema["properties"] = properties
        required = [name for name in schema.get("required", []) if name != PHONE_ARGUMENT]
        if required:
            schema["required"] = required
        else:
            schema.pop("required", None)
        return schema


@dataclass(frozen=True)
class ToolDeclaration:
    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)


def is_tool_enabled(name: str, config: schemas.TenantAgentConfig) -> bool:
    flag = CAPABILITY_FLAGS.get(name)
    return flag is None or bool(getattr(config, flag, False))


class ToolRegistry:
    """Holds tool specs and executes calls against the domain adapters."""

    def __init__(
        self,
        services: ToolServices,
        specs: Optional[list[ToolSpec]] = None,
        settings: Optional[BotSettings] = None,
    ) -> None:
        self._services = services
        self._settings = settings or get_bot_settings()
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs if specs is not None else DEFAULT_TOOLS:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._specs:
            raise ValueError(f"Tool '{spec.name}' already registered")
        self._specs[spec.name] = spec

    def names(self, config: schemas.TenantAgentConfig) -> list[str]:
        return [name for name in self._specs if is_tool_enabled(name, config)]

    def declarations(self, config: schemas.TenantAgentConfig) -> list[ToolDeclaration]:
        return [
            ToolDeclaration(spec.name, spec.description, spec.parameters())
            for spec in self._specs.values()
            if is_tool_enabled(spec.name, config)
        ]

    def execute(self, call: schemas.ToolCall, context: ToolContext) -> schemas.ToolResult:
        """Run one tool call.

        Unknown, hidden or invalid calls and :class:`AdapterError` become a
        failed result the model can react to. ``StoreError`` propagates.
        """

        spec = self._specs.get(call.name)
        if spec is None or not is_tool_enabled(call.name, context.config):
            return schemas.ToolResult(success=False, error=f"Tool '{call.name}' is not available")

        arguments = dict(call.arguments or {})
        if spec.needs_phone:
            arguments[PHONE_ARGUMENT] = context.customer_phone
        try:
            parsed = spec.args_model.model_validate(arguments)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
            )
            return schemas.ToolResult(success=False, error=f"Invalid arguments: {problems}")

        try:
            data = spec.handler(parsed, context, self._services, self._settings)
        except AdapterError as exc:
            logger.info(
                "Tool %s rejected: %s",
                call.name,
                exc,
                extra={
                    "event": "tool_failed",
                    "tool": call.name,
                    "tenant_id": str(context.tenant_id),
                    "conversation_id": str(context.conversation_id),
                    "error_kind": exc.kind,
                },
            )
            return schemas.ToolResult(success=False, error=str(exc))
        return schemas.ToolResult(success=True, data=data)


# ---------------------------------------------------------------------------
# Handlers


def _hours_for(config: schemas.TenantAgentConfig, day_value: str) -> Optional[dict[str, str]]:
    hours = config.hours_for(day_name(parse_day(day_value)))
    return hours.model_dump() if hours else None


def _get_services_info(args: GetServicesInfoArgs, ctx: ToolContext, _s, _cfg) -> Any:
    services = ctx.config.services
    if args.service_name:
        match = pricing.find_service(services, args.service_name)
        if match is None:
            raise AdapterError(f"Service '{args.service_name}' not found")
        services = [match]
    return {"services": [service.model_dump(exclude_none=True) for service in services]}


def _check_availability(
    args: CheckAvailabilityArgs, ctx: ToolContext, services: ToolServices, settings: BotSettings
) -> Any:
    day = parse_day(args.date)
    report = services.scheduler.check_availability(
        ctx.tenant_id,
        day,
        _hours_for(ctx.config, args.date),
        settings.slot_minutes,
        ctx.config.tz,
    )
    return report.model_dump()


def _create_appointment(
    args: CreateAppointmentArgs, ctx: ToolContext, services: ToolServices, settings: BotSettings
) -> Any:
    match = pricing.find_service(ctx.config.services, args.service_type)
    service_type = match.name if match else args.service_type
    duration = (match.duration_minutes if match else None) or settings.default_duration_minutes
    customer = services.customers.get_or_create(
        ctx.tenant_id, args.customer_name or ctx.customer_name, args.customer_phone
    )
    vehicle = services.vehicles.get_or_create(
        ctx.tenant_id, customer.id, args.vehicle_description
    )
    appointment = services.scheduler.create_from_bot(
        ctx.tenant_id,
        customer.id,
        vehicle.id if vehicle else None,
        service_type,
        args.date,
        args.time,
        hours_for_day=_hours_for(ctx.config, args.date),
        tz=ctx.config.tz,
        duration_minutes=duration,
        notes=args.notes,
        require_human_approval=ctx.config.require_human_approval,
        customer_phone=customer.phone,
    )
    local_start = appointment.start_at.astimezone(ctx.config.tz)
    return {
        "appointment_id": str(appointment.id),
        "service_type": appointment.service_type,
        "date": local_start.date().isoformat(),
        "time": local_start.strftime("%H:%M"),
        "duration_minutes": appointment.duration_minutes,
        "status": appointment.status,
        "requires_confirmation": appointment.status == "scheduled",
    }


def _get_service_price(args: GetServicePriceArgs, ctx: ToolContext, _s, _cfg) -> Any:
    service = pricing.get_service_price(ctx.config.services, args.service_name)
    return service.model_dump(exclude_none=True)


def _create_quote(args: CreateQuoteArgs, ctx: ToolContext, _s, settings: BotSettings) -> Any:
    quote = pricing.create_quote(
        ctx.config.services,
        args.customer_name,
        args.services,
        settings.quote_tax_rate,
        vehicle=args.vehicle,
    )
    return quote.as_tool_data()


def _create_work_order(
    args: CreateWorkOrderArgs, ctx: ToolContext, services: ToolServices, _cfg
) -> Any:
    match = pricing.find_service(ctx.config.services, args.service_name)
    customer = services.customers.get_or_create(
        ctx.tenant_id, args.customer_name or ctx.customer_name, args.customer_phone
    )
    vehicle = services.vehicles.get_or_create(
        ctx.tenant_id, customer.id, args.vehicle_description
    )
    order = services.orders.create_from_bot(
        ctx.tenant_id,
        customer.id,
        match.name if match else args.service_name,
        vehicle_id=vehicle.id if vehicle else None,
        estimated_cost=match.price if match else None,
        notes=args.notes,
    )
    return {
        "work_order_id": str(order.id),
        "service_name": order.service_name,
        "estimated_cost": order.estimated_cost,
        "status": order.status,
    }


def _escalate(args: EscalateArgs, ctx: ToolContext, services: ToolServices, _cfg) -> Any:
    if services.conversations is not None:
        services.conversations.set_bot_active(ctx.conversation_id, False)
    ctx.escalated = True
    logger.info(
        "Conversation handed to staff: %s",
        args.reason,
        extra={
            "event": "escalated_to_human",
            "tenant_id": str(ctx.tenant_id),
            "conversation_id": str(ctx.conversation_id),
        },
    )
    return {"escalated": True}


DEFAULT_TOOLS: list[ToolSpec] = [
    ToolSpec(
        name="get_services_info",
        description="List the workshop's services with prices and durations.",
        args_model=GetServicesInfoArgs,
        handler=_get_services_info,
    ),
    ToolSpec(
        name="check_availability",
        description="Check business hours, booked slots and free slots for a day.",
        args_model=CheckAvailabilityArgs,
        handler=_check_availability,
    ),
    ToolSpec(
        name="create_appointment_request",
        description=(
            "Book an appointment once the customer confirmed service, vehicle, date and time."
        ),
        args_model=CreateAppointmentArgs,
        handler=_create_appointment,
        needs_phone=True,
    ),
    ToolSpec(
        name="get_service_price",
        description="Get the price and duration of one service.",
        args_model=GetServicePriceArgs,
        handler=_get_service_price,
    ),
    ToolSpec(
        name="create_quote",
        description="Build a quote with subtotal, tax and total for one or more services.",
        args_model=CreateQuoteArgs,
        handler=_create_quote,
    ),
    ToolSpec(
        name="create_work_order",
        description="Open a pending work order for a service the customer requested.",
        args_model=CreateWorkOrderArgs,
        handler=_create_work_order,
        needs_phone=True,
    ),
    ToolSpec(
        name="escalate_to_human",
        description="Hand the conversation to workshop staff and stop answering automatically.",
        args_model=EscalateArgs,
        handler=_escalate,
    ),
]


__all__ = [
    "CAPABILITY_FLAGS",
    "DEFAULT_TOOLS",
    "ToolContext",
    "ToolDeclaration",
    "ToolRegistry",
    "ToolServices",
    "ToolSpec",
    "is_tool_enabled",
]
