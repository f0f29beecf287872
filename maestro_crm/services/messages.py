"""Customer-facing texts and outbound mail records."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional
from urllib.parse import quote as urlquote

from maestro_crm.schemas.assistant import QuoteMessageInput
from maestro_crm.schemas.mail import MailMessage, MailRecord
from maestro_crm.schemas.quote import Quote
from maestro_crm.schemas.service_request import ServiceRequest
from maestro_crm.schemas.session import SessionContext
from maestro_crm.schemas.users import UserProfile
from maestro_crm.services.exceptions import ValidationError
from maestro_crm.services.pricing import format_money

NOT_SPECIFIED = "No especificado"
NOT_SPECIFIED_F = "No especificada"

_MONTHS = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]


def short_id(document_id: str) -> str:
    return document_id[:7].upper()


def format_date(value: Optional[datetime]) -> str:
    if value is None:
        return "N/A"
    return f"{value.day:02d} de {_MONTHS[value.month - 1]} de {value.year}"


def whatsapp_number(phone: Optional[str], country_code: str = "593") -> str:
    digits = re.sub(r"[^0-9]", "", phone or "")
    if not digits:
        raise ValidationError("No hay un número de teléfono válido para este cliente.")
    if digits.startswith(country_code):
        number = digits
    elif len(digits) == 10:
        number = f"{country_code}{digits[1:]}"
    else:
        number = f"{country_code}{digits}"
    return number


def whatsapp_link(phone: Optional[str], message: str, country_code: str = "593") -> str:
    number = whatsapp_number(phone, country_code)
    return f"https://wa.me/{number}?text={urlquote(message, safe='')}"


def quote_message_input(quote: Quote, technician_name: str) -> QuoteMessageInput:
    """Build the generator input with every optional field defaulted."""

    return QuoteMessageInput(
        customer_name=quote.customer_name or "Cliente",
        service_request_id=quote.service_request_id,
        service_address=quote.service_address or NOT_SPECIFIED_F,
        service_type=quote.service_type or NOT_SPECIFIED,
        urgency=quote.urgency or NOT_SPECIFIED,
        problem_description=quote.problem_description or NOT_SPECIFIED,
        quote_id=quote.id or "",
        items=[item.model_dump() for item in quote.items],
        subtotal=quote.subtotal,
        vat_amount=quote.vat_amount,
        vat_percentage=quote.vat_percentage,
        total_amount=quote.total_amount,
        valid_until=format_date(quote.valid_until) if quote.valid_until else NOT_SPECIFIED,
        technician_name=technician_name,
    )


def render_quote_message(data: QuoteMessageInput, brand_name: str = "MaestroYa CRM") -> str:
    item_lines = "\n".join(
        f"- {item['quantity']:g} x {item['description']} — {format_money(item['price'])} cada uno"
        f" — Subtotal: {format_money(item['quantity'] * item['price'])}"
        for item in data.items
    )
    lines = [
        "🔧 *COTIZACIÓN DE SERVICIO*",
        "",
        f"Estimado/a {data.customer_name},",
        "",
        f"Le presentamos la cotización solicitada para el servicio N° {short_id(data.service_request_id)}"
        " con la siguiente información:",
        "",
        f"📍 *Dirección:* {data.service_address}",
        f"⚙️ *Descripción del servicio:* {data.service_type}",
        f"🚨 *Nivel de urgencia:* {data.urgency}",
        f"📝 *Problema reportado:* {data.problem_description}",
        "",
        "🛠️ *Detalle de cotización:*",
        item_lines,
        "",
        "💵 *Resumen de montos:*",
        f"Subtotal: {format_money(data.subtotal)}",
        f"IVA ({data.vat_percentage:g}%): {format_money(data.vat_amount)}",
        f"*TOTAL*: {format_money(data.total_amount)}",
        "",
        f"🗓️ *Vigencia de esta cotización:* {data.valid_until}",
        "",
        "✅ *Incluye garantía de satisfacción y materiales certificados.*",
        "🔄 Si tiene dudas o desea hacer cambios, por favor comuníquese antes de la fecha de vigencia.",
        "",
        "⚠️ *¿Cómo proceder?*",
        "Responda este mismo mensaje para aprobar, rechazar o solicitar ajustes."
        " Una vez aceptada, coordinaremos fecha y hora.",
        "",
        f"¡Gracias por confiar en {brand_name}!",
        f"📞 Contacto técnico: {data.technician_name}",
    ]
    return "\n".join(lines)


def render_closing_message(service: ServiceRequest) -> str:
    hours = service.hours_worked if service.hours_worked else NOT_SPECIFIED
    lines = [
        "✅ *SERVICIO COMPLETADO*",
        "",
        f"Estimado/a {service.customer_name},",
        "",
        f"Su servicio N° {short_id(service.id or '')} ha sido completado exitosamente.",
        "",
        f"📍 *Servicio realizado:* {service.service_type}",
        f"📅 *Fecha de finalización:* {format_date(service.completed_at)}",
        f"⏱️ *Tiempo trabajado:* {hours} horas",
        "",
        "💵 *RESUMEN DE PAGO:*",
        f"Total del servicio: {format_money(service.total_amount)}",
        f"Anticipo pagado: {format_money(service.advance_payment)}",
        f"*SALDO PENDIENTE: {format_money(service.remaining_balance)}*",
        "",
        "💳 *Formas de pago:*",
        "- Efectivo",
        "- Transferencia: [Datos bancarios]",
        "",
        "🛡️ *GARANTÍA:*",
        f"Este servicio cuenta con garantía de {service.warranty_days or 0} días.",
        f"Válida hasta: {format_date(service.warranty_expires_at)}",
        "",
        "📝 *Notas del técnico:*",
        service.completion_notes or "",
        "",
        "¿Tiene alguna pregunta sobre el servicio?",
        "",
        "¡Gracias por confiar en nosotros!",
    ]
    return "\n".join(lines)


def intake_acknowledgement(service: ServiceRequest, brand_name: str = "MaestroYa") -> MailRecord:
    text = (
        f"¡Hola {service.customer_name}! Hemos recibido tu solicitud de servicio. "
        "Nuestro equipo la está revisando y pronto te asignaremos un técnico. "
        f"¡Gracias por confiar en {brand_name}!"
    )
    html = (
        f"<p>¡Hola <b>{service.customer_name}</b>!</p>"
        f"<p>Hemos recibido tu solicitud de servicio de <b>{service.service_type}</b>.</p>"
        "<p>Nuestro equipo la está revisando y pronto te asignaremos un técnico.</p>"
        f"<p>¡Gracias por confiar en {brand_name}!</p>"
    )
    return MailRecord(
        to=[service.customer_email],
        message=MailMessage(
            subject=f"{brand_name} - Solicitud de Servicio Recibida",
            text=text,
            html=html,
        ),
    )


def role_change_notification(
    target: UserProfile,
    new_role: str,
    session: SessionContext,
    brand_name: str = "MaestroYa CRM",
) -> MailRecord:
    html = (
        f"<p>Hola {target.display_name or 'usuario'},</p>"
        f"<p>Te informamos que tu rol en la plataforma {brand_name} ha sido actualizado.</p>"
        f"<p><b>Nuevo Rol Asignado:</b> {new_role}</p>"
        f"<p>Este cambio fue realizado por el administrador {session.display_name or session.email}.</p>"
        "<p>Si tienes alguna pregunta, por favor, contacta a tu gerente o al soporte del sistema.</p>"
        f"<p>Gracias,<br/>El equipo de {brand_name}</p>"
    )
    return MailRecord(
        to=[target.email],
        message=MailMessage(subject=f"Actualización de Rol en {brand_name}", html=html),
    )


def payment_reminder(service: ServiceRequest, brand_name: str = "MaestroYa") -> MailRecord:
    reference = short_id(service.id or "")
    html = (
        f"<p>¡Hola <b>{service.customer_name}</b>!</p>"
        "<p>Te enviamos un recordatorio amistoso sobre el saldo pendiente para tu servicio de "
        f"<b>{service.service_type}</b>.</p>"
        "<p><b>Detalles del Servicio:</b></p>"
        "<ul>"
        f"<li>ID de Servicio: {reference}</li>"
        f"<li>Monto Total: {format_money(service.total_amount)}</li>"
        f"<li><b>Saldo Pendiente: {format_money(service.remaining_balance)}</b></li>"
        "</ul>"
        "<p>Puedes realizar tu pago mediante transferencia o efectivo. Por favor, contáctanos "
        "si ya has realizado el pago o si tienes alguna pregunta.</p>"
        f"<p>¡Gracias por tu confianza en {brand_name}!</p>"
    )
    return MailRecord(
        to=[service.customer_email],
        message=MailMessage(
            subject=f"Recordatorio de Pago - Servicio {reference} - {brand_name}",
            html=html,
        ),
    )
