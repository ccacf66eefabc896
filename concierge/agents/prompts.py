"""System prompt rendering and canned replies for the WhatsApp bot.

Everything here is pure: the same configuration, business facts and tool
list always render the same text.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime

from ..adapters.appointments import WEEKDAYS
from . import schemas

_DAY_LABELS: Mapping[str, Mapping[str, str]] = {
    "es": {
        "monday": "Lunes",
        "tuesday": "Martes",
        "wednesday": "Miércoles",
        "thursday": "Jueves",
        "friday": "Viernes",
        "saturday": "Sábado",
        "sunday": "Domingo",
    },
    "en": {day: day.capitalize() for day in WEEKDAYS},
}

_CANNED: Mapping[str, Mapping[str, str]] = {
    "es": {
        "closed": (
            "¡Gracias por escribirnos! En este momento estamos cerrados. "
            "Nuestro horario es:\n{hours}\nTe responderemos en cuanto abramos."
        ),
        "apology": (
            "Lo siento, tuve un problema para procesar tu mensaje. "
            "Un asesor del taller te contactará en breve."
        ),
        "fallback": (
            "Déjame revisarlo con el equipo del taller y te respondo en breve."
        ),
        "closed_day": "Cerrado",
        "unspecified": "No especificado",
    },
    "en": {
        "closed": (
            "Thanks for your message! We are closed right now. "
            "Our hours are:\n{hours}\nWe will get back to you as soon as we open."
        ),
        "apology": (
            "Sorry, I had trouble processing your message. "
            "Someone from the workshop will contact you shortly."
        ),
        "fallback": "Let me check with the workshop team and get back to you shortly.",
        "closed_day": "Closed",
        "unspecified": "Not specified",
    },
}


def _lang(language: str | None) -> str:
    key = (language or "es").split("-")[0].lower()
    return key if key in _CANNED else "es"


def canned_text(language: str | None, key: str) -> str:
    return _CANNED[_lang(language)][key]


def format_business_hours(
    hours: Mapping[str, schemas.DayHours | None], language: str | None = "es"
) -> str:
    """One line per weekday, Monday first; missing days render as closed."""

    lang = _lang(language)
    labels = _DAY_LABELS[lang]
    lines = []
    for day in WEEKDAYS:
        window = hours.get(day)
        if window is None:
            lines.append(f"- {labels[day]}: {_CANNED[lang]['closed_day']}")
        else:
            lines.append(f"- {labels[day]}: {window.start} - {window.end}")
    return "\n".join(lines)


def closed_message(config: schemas.TenantAgentConfig) -> str:
    hours = format_business_hours(config.business_hours, config.language)
    return canned_text(config.language, "closed").format(hours=hours)


def _format_services(services: Sequence[schemas.ServiceInfo], lang: str) -> str:
    if not services:
        return "- (sin servicios configurados)" if lang == "es" else "- (no services configured)"
    lines = []
    for service in services:
        line = f"- {service.name}: ${service.price:,.2f}"
        if service.duration_minutes:
            line += f" ({service.duration_minutes} min)"
        if service.description:
            line += f". {service.description}"
        lines.append(line)
    return "\n".join(lines)


def _format_policies(policies: schemas.Policies, lang: str) -> str:
    missing = _CANNED[lang]["unspecified"]
    if lang == "es":
        lines = [
            f"- Formas de pago: {', '.join(policies.payment_methods) or missing}",
            f"- Cancelaciones: {policies.cancellation_policy or missing}",
            f"- Garantía: {policies.warranty_policy or missing}",
        ]
        if policies.deposit_required:
            lines.append(f"- Anticipo requerido: {policies.deposit_percentage or 0:g}%")
    else:
        lines = [
            f"- Payment methods: {', '.join(policies.payment_methods) or missing}",
            f"- Cancellations: {policies.cancellation_policy or missing}",
            f"- Warranty: {policies.warranty_policy or missing}",
        ]
        if policies.deposit_required:
            lines.append(f"- Deposit required: {policies.deposit_percentage or 0:g}%")
    return "\n".join(lines)


def _format_faqs(faqs: Sequence[schemas.FAQ], lang: str) -> str:
    if not faqs:
        return "- (ninguna)" if lang == "es" else "- (none)"
    q, a = ("P", "R") if lang == "es" else ("Q", "A")
    return "\n".join(f"{q}: {faq.question}\n{a}: {faq.answer}" for faq in faqs)


def _capabilities(
    config: schemas.TenantAgentConfig, tool_names: Sequence[str], lang: str
) -> list[str]:
    es = lang == "es"
    lines: list[str] = []
    if config.auto_schedule_appointments and "create_appointment_request" in tool_names:
        if config.require_human_approval:
            lines.append(
                "- Puedes registrar citas; quedan pendientes de confirmación del taller."
                if es
                else "- You may book appointments; the workshop confirms them afterwards."
            )
        else:
            lines.append(
                "- Puedes agendar citas directamente tras confirmar servicio, fecha y hora."
                if es
                else "- You may book appointments once service, date and time are confirmed."
            )
    else:
        lines.append(
            "- NO puedes agendar citas. Di que verificarás la disponibilidad con el taller "
            "y que un asesor confirmará."
            if es
            else "- You can NOT book appointments. Say you will check availability with "
            "the workshop and a staff member will confirm."
        )
    if config.auto_create_orders and "create_work_order" in tool_names:
        lines.append(
            "- Puedes abrir órdenes de trabajo para servicios solicitados."
            if es
            else "- You may open work orders for requested services."
        )
    else:
        lines.append(
            "- NO puedes crear órdenes de trabajo; el taller las crea."
            if es
            else "- You can NOT create work orders; the workshop does."
        )
    if config.business_hours_only:
        lines.append(
            "- Solo ofrece horarios dentro del horario de atención."
            if es
            else "- Only offer times inside business hours."
        )
    return lines


def build_system_prompt(
    config: schemas.TenantAgentConfig,
    facts: schemas.BusinessFacts,
    tool_names: Sequence[str],
    now: datetime | None = None,
) -> str:
    """Render the system prompt for one turn.

    Capability lines follow the same flags that decide which tools are
    exposed, and the prompt only lists ``tool_names``. When ``now`` is given
    the tenant-local date is included so relative days can be resolved.
    """

    lang = _lang(config.language)
    es = lang == "es"
    missing = _CANNED[lang]["unspecified"]
    sections: list[str] = []
    today = ""
    if now is not None:
        local = now.astimezone(config.tz)
        label = _DAY_LABELS[lang][WEEKDAYS[local.weekday()]]
        today = f"{local.date().isoformat()} ({label}) {local.strftime('%H:%M')}"

    if es:
        sections.append(
            f"Eres el asistente virtual de WhatsApp de {facts.name}, un taller mecánico."
        )
        sections.append(
            "# Información del taller\n"
            f"- Nombre: {facts.name}\n"
            f"- Dirección: {facts.address or missing}\n"
            f"- Teléfono: {facts.phone or missing}\n"
            f"- Email: {facts.email or missing}"
        )
        sections.append(
            f"# Horario de atención ({config.timezone})\n"
            + format_business_hours(config.business_hours, lang)
        )
        if today:
            sections.append(f"# Fecha y hora actual\n{today}")
        sections.append("# Servicios y precios\n" + _format_services(config.services, lang))
        sections.append("# Políticas\n" + _format_policies(config.policies, lang))
        sections.append("# Preguntas frecuentes\n" + _format_faqs(config.faqs, lang))
        sections.append(
            "# Reglas de conversación\n"
            f"- Personalidad: {config.personality or 'Profesional y amigable'}\n"
            "- Idioma: español\n"
            "- Responde en máximo 2-3 líneas.\n"
            "- Confirma siempre nombre, servicio, fecha y hora antes de registrar algo.\n"
            "- Nunca inventes precios ni horarios; usa las herramientas."
        )
    else:
        sections.append(
            f"You are the WhatsApp virtual assistant of {facts.name}, a car repair workshop."
        )
        sections.append(
            "# Workshop information\n"
            f"- Name: {facts.name}\n"
            f"- Address: {facts.address or missing}\n"
            f"- Phone: {facts.phone or missing}\n"
            f"- Email: {facts.email or missing}"
        )
        sections.append(
            f"# Business hours ({config.timezone})\n"
            + format_business_hours(config.business_hours, lang)
        )
        if today:
            sections.append(f"# Current date and time\n{today}")
        sections.append("# Services and prices\n" + _format_services(config.services, lang))
        sections.append("# Policies\n" + _format_policies(config.policies, lang))
        sections.append("# FAQ\n" + _format_faqs(config.faqs, lang))
        sections.append(
            "# Conversation rules\n"
            f"- Personality: {config.personality or 'Professional and friendly'}\n"
            "- Language: English\n"
            "- Keep answers to 2-3 lines.\n"
            "- Always confirm name, service, date and time before booking anything.\n"
            "- Never make up prices or times; use the tools."
        )

    header = "# Capacidades" if es else "# Capabilities"
    sections.append(header + "\n" + "\n".join(_capabilities(config, tool_names, lang)))

    if config.policies.escalation_keywords:
        keywords = ", ".join(config.policies.escalation_keywords)
        if "escalate_to_human" in tool_names:
            rule = (
                f"Si el cliente menciona: {keywords}, usa escalate_to_human."
                if es
                else f"If the customer mentions: {keywords}, use escalate_to_human."
            )
        else:
            rule = (
                f"Si el cliente menciona: {keywords}, indica que un asesor lo contactará."
                if es
                else f"If the customer mentions: {keywords}, say a staff member will reach out."
            )
        sections.append(("# Escalamiento\n" if es else "# Escalation\n") + rule)

    if config.custom_instructions:
        sections.append(
            ("# Instrucciones adicionales\n" if es else "# Additional instructions\n")
            + config.custom_instructions.strip()
        )

    tools_header = "# Herramientas disponibles" if es else "# Available tools"
    listed = "\n".join(f"- {name}" for name in tool_names) or "-"
    sections.append(f"{tools_header}\n{listed}")

    return "\n\n".join(sections)


__all__ = [
    "build_system_prompt",
    "canned_text",
    "closed_message",
    "format_business_hours",
]
