"""
Reminder email content.

The rendered HTML is stored on each queue row, so changing this template
never alters reminders that are already queued.
"""

from html import escape
from typing import Optional

REMINDER_SUBJECT = "Reminder Bacaan Harian - Duapasal"

DEFAULT_GREETING_NAME = "Jemaat Tuhan"
DEFAULT_RECIPIENT_NAME = "Jemaat"
DEFAULT_RECIPIENT_PHONE = "-"


def _call_to_action(app_url: str) -> str:
    base = (app_url or "").strip().rstrip("/")
    if not base:
        return ""
    link = escape(f"{base}/dashboard", quote=True)
    return (
        '<p style="margin:16px 0 0 0;">'
        f'<a href="{link}" style="display:inline-block;padding:10px 14px;background:#4f46e5;'
        'color:#fff;border-radius:10px;text-decoration:none;font-weight:600;">'
        "Buka Bacaan Hari Ini</a></p>"
    )


def build_reminder_html(full_name: Optional[str], app_url: str = "") -> str:
    """
    Render the daily reading reminder email.

    Args:
        full_name: Recipient's name; blank falls back to a generic greeting
        app_url: Public base URL of the reader app; blank omits the button

    Returns:
        Complete HTML document
    """
    safe_name = escape((full_name or "").strip() or DEFAULT_GREETING_NAME)
    cta = _call_to_action(app_url)

    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8" />
    <title>Reminder Bacaan Harian</title>
  </head>
  <body style="font-family: Arial, sans-serif; background:#f9fafb; margin:0; padding:20px;">
    <div style="max-width:640px; margin:0 auto; background:#ffffff; border:1px solid #e5e7eb; border-radius:12px; overflow:hidden;">
      <div style="background:linear-gradient(135deg,#4f46e5,#3b82f6); padding:18px 22px; color:#fff;">
        <div style="font-size:16px; font-weight:700;">Reminder Bacaan Harian</div>
        <div style="font-size:13px; opacity:.9; margin-top:4px;">Duapasal</div>
      </div>
      <div style="padding:18px 22px; color:#111827;">
        <p style="margin:0 0 10px 0;">Shalom <b>{safe_name}</b>,</p>
        <p style="margin:0 0 10px 0;">Ini pengingat untuk menyelesaikan bacaan harian hari ini.</p>
        <p style="margin:0 0 10px 0;">Tuhan Yesus memberkati!</p>
        {cta}
        <p style="margin:16px 0 0 0; font-size:12px; color:#6b7280;">Jika Anda tidak ingin menerima email ini, nonaktifkan "Reminder Email" di halaman Profil.</p>
      </div>
    </div>
  </body>
</html>"""


def recipient_name(full_name: Optional[str]) -> str:
    return (full_name or "").strip() or DEFAULT_RECIPIENT_NAME


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def recipient_phone(phone: Optional[str]) -> str:
    return (phone or "").strip() or DEFAULT_RECIPIENT_PHONE
