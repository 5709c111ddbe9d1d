"""
Email templates for deadline notifications.

All templates use inline CSS for email client compatibility. User-supplied
text is HTML-escaped before it reaches the markup.

Each template function returns (subject, html_body, text_body).
"""

from __future__ import annotations

from html import escape

# Color constants
BG_PAGE = "#F4F6F8"
BG_CARD = "#FFFFFF"
ACCENT = "#2563EB"
DANGER = "#DC2626"
TEXT_PRIMARY = "#111827"
TEXT_SECONDARY = "#4B5563"
BORDER = "#E5E7EB"

APP_NAME = "Deadline Tracker"

PRIORITY_COLORS = {
    "low": "#10B981",
    "medium": "#F59E0B",
    "high": "#F97316",
    "urgent": DANGER,
}


def _base_layout(content: str) -> str:
    """Wrap content in the base email layout."""
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{APP_NAME}</title>
</head>
<body style="margin: 0; padding: 0; background-color: {BG_PAGE}; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="background-color: {BG_PAGE};">
        <tr>
            <td align="center" style="padding: 32px 16px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600" style="max-width: 600px; width: 100%;">
                    <tr>
                        <td style="background-color: {BG_CARD}; border: 1px solid {BORDER}; border-radius: 10px; padding: 32px;">
                            {content}
                        </td>
                    </tr>
                    <tr>
                        <td align="center" style="padding-top: 24px;">
                            <p style="color: {TEXT_SECONDARY}; font-size: 12px; line-height: 1.5; margin: 0;">
                                You are receiving this because notifications are enabled in your {APP_NAME} settings.
                            </p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""


def _button(url: str, label: str, color: str = ACCENT) -> str:
    return f"""\
<table role="presentation" cellspacing="0" cellpadding="0" border="0" style="margin: 24px 0;">
    <tr>
        <td style="background-color: {color}; border-radius: 6px;">
            <a href="{escape(url)}" target="_blank" style="display: inline-block; padding: 12px 28px; color: #FFFFFF; font-size: 15px; font-weight: 600; text-decoration: none;">
                {label}
            </a>
        </td>
    </tr>
</table>"""


def _detail_rows(rows: list[tuple[str, str]]) -> str:
    return "".join(
        f'<p style="color: {TEXT_SECONDARY}; font-size: 14px; margin: 4px 0;">'
        f'<strong style="color: {TEXT_PRIMARY};">{label}:</strong> {escape(value)}</p>'
        for label, value in rows
    )


def deadline_reminder(
    name: str,
    title: str,
    due_date: str,
    time_remaining: str,
    priority: str,
    url: str,
    subject_area: str | None = None,
    description: str | None = None,
) -> tuple[str, str, str]:
    """
    Reminder sent ahead of a deadline.

    Returns:
        (subject, html_body, text_body)
    """
    subject = f"Reminder: {title} - Due in {time_remaining}"
    color = PRIORITY_COLORS.get(priority, ACCENT)
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 22px; margin: 0 0 16px 0;">Deadline Reminder</h1>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 16px 0;">Hi {escape(name)},</p>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 16px 0;">
    <strong style="color: {TEXT_PRIMARY};">{escape(title)}</strong> is due in
    <strong style="color: {color};">{escape(time_remaining)}</strong>.
</p>
{_detail_rows([("Due", due_date), ("Priority", priority.capitalize()), ("Subject", subject_area or "N/A")])}
{f'<p style="color: {TEXT_SECONDARY}; font-size: 14px; margin: 12px 0 0 0;">{escape(description)}</p>' if description else ""}
{_button(url, "View Deadline")}"""
    text_body = (
        f"Hi {name},\n\n"
        f'Your deadline "{title}" is due in {time_remaining}.\n\n'
        f"Due: {due_date}\n"
        f"Priority: {priority.capitalize()}\n"
        f"Subject: {subject_area or 'N/A'}\n\n"
        f"View it here: {url}\n\n"
        f"-- {APP_NAME}"
    )
    return subject, _base_layout(content), text_body


def deadline_overdue(
    name: str,
    title: str,
    due_date: str,
    overdue_duration: str,
    priority: str,
    url: str,
    subject_area: str | None = None,
) -> tuple[str, str, str]:
    """Overdue alert, repeated at most daily for a week."""
    subject = f"OVERDUE: {title}"
    content = f"""\
<h1 style="color: {DANGER}; font-size: 22px; margin: 0 0 16px 0;">Deadline Overdue</h1>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 16px 0;">Hi {escape(name)},</p>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 16px 0;">
    <strong style="color: {TEXT_PRIMARY};">{escape(title)}</strong> was due
    <strong style="color: {DANGER};">{escape(overdue_duration)}</strong> ago and needs immediate attention.
</p>
{_detail_rows([("Was due", due_date), ("Priority", priority.capitalize()), ("Subject", subject_area or "N/A")])}
{_button(url, "Update Deadline", DANGER)}"""
    text_body = (
        f"Hi {name},\n\n"
        f'DEADLINE OVERDUE: "{title}" was due {overdue_duration} ago.\n\n'
        f"Was due: {due_date}\n"
        f"Priority: {priority.capitalize()}\n\n"
        f"Update it here: {url}\n\n"
        f"-- {APP_NAME}"
    )
    return subject, _base_layout(content), text_body


def daily_summary(name: str, summary: dict[str, int], date_label: str, url: str) -> tuple[str, str, str]:
    """Morning digest of active, due, overdue and completed counts."""
    subject = f"Daily Deadline Summary - {date_label}"
    rows = [
        ("Active deadlines", summary.get("total_deadlines", 0)),
        ("Due today", summary.get("due_today", 0)),
        ("Due this week", summary.get("upcoming_deadlines", 0)),
        ("Overdue", summary.get("overdue_deadlines", 0)),
        ("Completed today", summary.get("completed_today", 0)),
    ]
    table = "".join(
        f'<tr><td style="padding: 8px 0; color: {TEXT_SECONDARY}; border-bottom: 1px solid {BORDER};">{label}</td>'
        f'<td align="right" style="padding: 8px 0; color: {TEXT_PRIMARY}; font-weight: 600; border-bottom: 1px solid {BORDER};">{count}</td></tr>'
        for label, count in rows
    )
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 22px; margin: 0 0 16px 0;">Your Daily Summary</h1>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 16px 0;">Hi {escape(name)}, here is where things stand for {escape(date_label)}.</p>
<table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%">{table}</table>
{_button(url, "Open Dashboard")}"""
    text_lines = "\n".join(f"{label}: {count}" for label, count in rows)
    text_body = f"Hi {name},\n\nYour summary for {date_label}:\n\n{text_lines}\n\n{url}\n\n-- {APP_NAME}"
    return subject, _base_layout(content), text_body


def deadline_shared(name: str, title: str, original_title: str, sharer: str, url: str) -> tuple[str, str, str]:
    """Sent when a collaborator receives their own copy of a deadline."""
    subject = f"{sharer} shared a deadline with you: {original_title}"
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 22px; margin: 0 0 16px 0;">New Shared Deadline</h1>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 16px 0;">Hi {escape(name)},</p>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 16px 0;">
    {escape(sharer)} added you as a collaborator on <strong style="color: {TEXT_PRIMARY};">{escape(original_title)}</strong>.
    Your own copy, <strong style="color: {TEXT_PRIMARY};">{escape(title)}</strong>, lets you track progress independently.
</p>
{_button(url, "View Your Copy")}"""
    text_body = (
        f"Hi {name},\n\n"
        f'{sharer} added you as a collaborator on "{original_title}".\n'
        f'Your copy "{title}" is here: {url}\n\n'
        f"-- {APP_NAME}"
    )
    return subject, _base_layout(content), text_body
