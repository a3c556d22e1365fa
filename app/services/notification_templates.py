"""
Pass notification email templates

Plain text and HTML bodies for the "your access pass" email. Every
user-supplied value is HTML-escaped in the HTML variant.
"""

from dataclasses import dataclass, asdict
from html import escape
from typing import Optional, Dict, Any

from ..config import settings
from ..utils.timezone import format_localized_datetime


@dataclass
class PassNotificationData:
    access_point_name: str
    pin: Optional[str]
    valid_from: str
    valid_to: str
    vehicle_plate: Optional[str] = None
    org_name: Optional[str] = None
    org_slug: Optional[str] = None
    pass_type: Optional[str] = None
    pass_type_name: Optional[str] = None
    number_of_days: int = 1
    support_email: Optional[str] = None
    terms_text: Optional[str] = None
    map_link: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_camping_pass(data: PassNotificationData) -> bool:
    pass_type = (data.pass_type or "").lower()
    pass_type_name = (data.pass_type_name or "").lower()
    return pass_type == "camping" or "camping" in pass_type_name or data.number_of_days > 1


def _display_names(data: PassNotificationData) -> tuple:
    camping = is_camping_pass(data)
    org_name = data.org_name or "Access Pass"
    pass_type_name = data.pass_type_name or ("Camping Pass" if camping else "Day Pass")
    return org_name, pass_type_name, camping


def email_subject(data: PassNotificationData) -> str:
    if data.pin:
        return f"Your Access Pass - PIN: {data.pin}"
    return "Your Access Pass"


def _instructions(data: PassNotificationData, camping: bool) -> str:
    if camping:
        return (
            "This is a reusable entry PIN, valid until 10:00 AM on your departure day.\n"
            "Please keep this pass available, as it may be required to confirm your camping entitlement.\n"
            "Enter your PIN code followed by the # key to gain access."
        )
    return (
        f"Enter your PIN followed by # at the keypad at {data.access_point_name} to gain access.\n"
        "Your pass is valid until 11:59 PM today."
    )


def generate_pass_notification_text(data: PassNotificationData, timezone: str) -> str:
    org_name, pass_type_name, camping = _display_names(data)
    valid_from = format_localized_datetime(data.valid_from, timezone)
    valid_to = format_localized_datetime(data.valid_to, timezone)
    support = data.support_email or settings.support_email

    lines = [f"{org_name} - {pass_type_name}", ""]
    if data.pin:
        lines += ["Your Access Pass is ready!", ""]
    else:
        lines += ["Your pass has been purchased!", ""]

    lines.append(f"Access Point: {data.access_point_name}")
    if data.pin:
        lines.append(f"PIN: {data.pin}")
    lines.append(f"Valid: {valid_from} - {valid_to}")
    if data.vehicle_plate:
        lines.append(f"Vehicle: {data.vehicle_plate}")
    lines.append("")

    if data.pin:
        lines.append(_instructions(data, camping))
    else:
        lines.append(
            f"Your PIN is being generated. Please contact {support} "
            "if you don't receive it within 5 minutes."
        )

    if data.map_link:
        lines += ["", f"Map: {data.map_link}"]
    if data.terms_text:
        lines += ["", "---", "TERMS & CONDITIONS", "", data.terms_text]

    return "\n".join(lines)


def generate_pass_notification_html(data: PassNotificationData, timezone: str) -> str:
    org_name, pass_type_name, camping = _display_names(data)
    valid_from = escape(format_localized_datetime(data.valid_from, timezone))
    valid_to = escape(format_localized_datetime(data.valid_to, timezone))
    support = escape(data.support_email or settings.support_email)
    access_point = escape(data.access_point_name)

    if data.pin:
        pin_block = (
            '<div style="margin: 24px 0; padding: 24px; background: #f0f9ff; border-radius: 12px; text-align: center;">'
            '<p style="margin: 0; font-size: 14px; color: #0369a1;">Your PIN</p>'
            f'<p style="margin: 8px 0 0 0; font-size: 40px; font-weight: 700; letter-spacing: 8px; color: #0c4a6e;">{escape(data.pin)}</p>'
            '</div>'
        )
        instructions = "".join(
            f'<p style="margin: 0 0 8px 0;">{escape(line)}</p>'
            for line in _instructions(data, camping).split("\n")
        )
    else:
        pin_block = (
            '<div style="margin: 24px 0; padding: 24px; background: #fef3c7; border-radius: 12px;">'
            '<p style="margin: 0; color: #92400e;">Your PIN is being generated. Please contact '
            f'<a href="mailto:{support}">{support}</a> if you don\'t receive it within 5 minutes.</p>'
            '</div>'
        )
        instructions = ""

    vehicle_row = ""
    if data.vehicle_plate:
        vehicle_row = f'<tr><td style="padding: 4px 12px 4px 0; color: #6b7280;">Vehicle</td><td>{escape(data.vehicle_plate)}</td></tr>'

    map_row = ""
    if data.map_link:
        map_row = f'<p style="margin: 16px 0 0 0;"><a href="{escape(data.map_link)}" style="color: #2563eb;">Open map</a></p>'

    terms = ""
    if data.terms_text:
        paragraphs = "".join(
            f'<p style="margin: 0 0 10px 0;">{escape(p)}</p>'
            for p in data.terms_text.split("\n\n") if p.strip()
        )
        terms = (
            '<div style="margin-top: 30px; padding: 20px; background: #f9fafb; border: 1px solid #e5e7eb; '
            'border-radius: 8px; font-size: 12px; color: #6b7280; line-height: 1.6;">'
            '<h3 style="margin: 0 0 16px 0; font-size: 14px; color: #374151;">Terms &amp; Conditions</h3>'
            f'{paragraphs}</div>'
        )

    return (
        '<!DOCTYPE html><html><body style="margin: 0; padding: 0; font-family: -apple-system, Segoe UI, Roboto, sans-serif; background: #ffffff;">'
        '<div style="max-width: 560px; margin: 0 auto; padding: 32px 24px; color: #111827;">'
        f'<h1 style="margin: 0; font-size: 22px;">{escape(org_name)}</h1>'
        f'<p style="margin: 4px 0 0 0; color: #6b7280;">{escape(pass_type_name)}</p>'
        f'{pin_block}'
        '<table style="border-collapse: collapse; font-size: 14px;">'
        f'<tr><td style="padding: 4px 12px 4px 0; color: #6b7280;">Access Point</td><td>{access_point}</td></tr>'
        f'<tr><td style="padding: 4px 12px 4px 0; color: #6b7280;">Valid</td><td>{valid_from} - {valid_to}</td></tr>'
        f'{vehicle_row}'
        '</table>'
        f'<div style="margin-top: 20px; font-size: 14px;">{instructions}</div>'
        f'{map_row}{terms}'
        '</div></body></html>'
    )
