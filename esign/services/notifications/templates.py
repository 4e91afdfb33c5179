"""Rendering for signing workflow notifications."""

from dataclasses import dataclass
from html import escape
from typing import Callable, Dict

from esign.services.notifications.base import NotificationTemplate, TemplateContext


class TemplateError(Exception):
    """Exception raised for template errors."""
    pass


@dataclass
class RenderedNotification:
    """Subject and bodies ready for transport."""
    subject: str
    html_content: str
    text_content: str


_LAYOUT = """<!DOCTYPE html>
<html>
<head>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ background-color: {accent}; color: white; padding: 20px; text-align: center; }}
    .content {{ background-color: #f9f9f9; padding: 30px; border: 1px solid #ddd; }}
    .button {{ display: inline-block; padding: 15px 30px; background-color: #76CA23;
               color: white; text-decoration: none; border-radius: 5px; font-weight: bold; }}
    .footer {{ text-align: center; padding: 20px; color: #666; font-size: 12px; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1>{heading}</h1></div>
    <div class="content">
{body}
    </div>
    <div class="footer">Sent on behalf of {firm}</div>
  </div>
</body>
</html>
"""


def _button(link: str, label: str) -> str:
    return f'      <p><a class="button" href="{escape(link, quote=True)}">{escape(label)}</a></p>'


def _render_request(ctx: TemplateContext) -> RenderedNotification:
    subject = ctx.subject or f"Please sign: {ctx.document_name}"
    lines = [
        f"      <p>Hello {escape(ctx.recipient_name)},</p>",
        f"      <p>{escape(ctx.firm_name)} has requested your signature on "
        f"<strong>{escape(ctx.document_name)}</strong>.</p>",
    ]
    if ctx.custom_message:
        lines.append(f"      <blockquote>{escape(ctx.custom_message)}</blockquote>")
    lines.append(_button(ctx.signing_link or "", "Review and Sign"))

    text = [
        f"Hello {ctx.recipient_name},",
        "",
        f"{ctx.firm_name} has requested your signature on {ctx.document_name}.",
    ]
    if ctx.custom_message:
        text += ["", ctx.custom_message]
    text += ["", f"Review and sign: {ctx.signing_link}"]

    return RenderedNotification(
        subject=subject,
        html_content=_LAYOUT.format(
            accent="#0A7BBF",
            heading="Document Signature Request",
            body="\n".join(lines),
            firm=escape(ctx.firm_name),
        ),
        text_content="\n".join(text),
    )


def _render_reminder(ctx: TemplateContext) -> RenderedNotification:
    subject = f"Reminder: Please sign {ctx.document_name}"
    waited = ""
    if ctx.days_since_sent is not None:
        waited = f" It was sent {ctx.days_since_sent} day(s) ago."
    number = f"Reminder #{ctx.reminder_number}" if ctx.reminder_number else "Reminder"

    lines = [
        f"      <p><strong>{escape(number)}</strong></p>",
        f"      <p>Hello {escape(ctx.recipient_name)},</p>",
        f"      <p><strong>{escape(ctx.document_name)}</strong> is still waiting for your "
        f"signature.{escape(waited)}</p>",
        _button(ctx.signing_link or "", "Sign Now"),
    ]
    text = [
        number,
        "",
        f"Hello {ctx.recipient_name},",
        "",
        f"{ctx.document_name} is still waiting for your signature.{waited}",
        "",
        f"Sign now: {ctx.signing_link}",
    ]

    return RenderedNotification(
        subject=subject,
        html_content=_LAYOUT.format(
            accent="#FF9800",
            heading="Signature Reminder",
            body="\n".join(lines),
            firm=escape(ctx.firm_name),
        ),
        text_content="\n".join(text),
    )


def _render_completed(ctx: TemplateContext) -> RenderedNotification:
    subject = f"Signed Document: {ctx.document_name}"
    lines = [
        f"      <p>Hello {escape(ctx.recipient_name)},</p>",
        f"      <p>All parties have signed <strong>{escape(ctx.document_name)}</strong>. "
        "The signed copy and its certificate of completion are attached.</p>",
    ]
    text = [
        f"Hello {ctx.recipient_name},",
        "",
        f"All parties have signed {ctx.document_name}.",
        "The signed copy and its certificate of completion are attached.",
    ]

    return RenderedNotification(
        subject=subject,
        html_content=_LAYOUT.format(
            accent="#76CA23",
            heading="Document Signed",
            body="\n".join(lines),
            firm=escape(ctx.firm_name),
        ),
        text_content="\n".join(text),
    )


_RENDERERS: Dict[NotificationTemplate, Callable[[TemplateContext], RenderedNotification]] = {
    NotificationTemplate.SIGNATURE_REQUEST: _render_request,
    NotificationTemplate.SIGNATURE_REMINDER: _render_reminder,
    NotificationTemplate.SIGNATURE_COMPLETED: _render_completed,
}


def render(context: TemplateContext) -> RenderedNotification:
    """Render ``context`` with the template it names."""
    renderer = _RENDERERS.get(NotificationTemplate(context.template))
    if renderer is None:
        raise TemplateError(f"Unknown template: {context.template}")
    if context.template != NotificationTemplate.SIGNATURE_COMPLETED and not context.signing_link:
        raise TemplateError(f"Template {context.template.value} requires a signing link")
    return renderer(context)
