"""
Notification Service - transactional email via the Resend HTTP API
"""
import httpx
import logging
from html import escape
from typing import Optional
from datetime import datetime

from interviewdesk import config

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


def get_resend_credentials():
    """Get Resend credentials from configuration"""
    return {
        "api_key": config.RESEND_API_KEY,
        "from_email": config.EMAIL_FROM,
        "from_name": config.EMAIL_FROM_NAME
    }


async def send_email(to: str, subject: str, html: str, text: Optional[str] = None) -> dict:
    """Send an email; failures are logged and returned, never raised"""
    creds = get_resend_credentials()

    if not creds["api_key"]:
        logger.warning("No email provider configured")
        return {"success": False, "error": "No email provider configured"}

    payload = {
        "from": f"{creds['from_name']} <{creds['from_email']}>",
        "to": [to],
        "subject": subject,
        "html": html
    }
    if text:
        payload["text"] = text

    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(
                RESEND_API_URL,
                headers={
                    "Authorization": f"Bearer {creds['api_key']}",
                    "Content-Type": "application/json"
                },
                json=payload
            )

            if response.status_code in [200, 201, 202]:
                logger.info(f"Email sent successfully to {to}")
                try:
                    data = response.json()
                except ValueError:
                    data = None
                return {"success": True, "data": data}
            else:
                logger.error(f"Failed to send email: {response.status_code} - {response.text}")
                return {"success": False, "error": response.text}

    except httpx.HTTPError as e:
        logger.error(f"Error sending email: {str(e)}")
        return {"success": False, "error": str(e)}


# ============ EMAIL TEMPLATES ============

EMAIL_STYLES = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; background-color: #f4f4f4; margin: 0; padding: 0; }
    .container { max-width: 600px; margin: 30px auto; background: #ffffff; border-radius: 8px; overflow: hidden; }
    .header { background: linear-gradient(135deg, #1e3a8a 0%, #3b82f6 100%); color: white; padding: 30px; text-align: center; }
    .header h1 { margin: 0; font-size: 24px; }
    .content { padding: 30px; }
    .details { background: #f8fafc; padding: 15px; border-radius: 8px; margin: 15px 0; }
    .label { font-weight: bold; color: #64748b; font-size: 12px; text-transform: uppercase; }
    .value { color: #1e293b; margin-bottom: 10px; }
    .cta-button { background: #3b82f6; color: white !important; padding: 14px 28px; text-decoration: none; border-radius: 8px; display: inline-block; margin: 20px 0; font-weight: bold; }
    .footer { text-align: center; padding: 20px; color: #64748b; font-size: 12px; background: #f8fafc; }
"""


def _format_expiry(expires_at: Optional[str]) -> str:
    if not expires_at:
        return "soon"
    try:
        return datetime.fromisoformat(expires_at.replace("Z", "+00:00")).strftime('%B %d, %Y')
    except ValueError:
        return escape(expires_at)


def get_invitation_email_template(
    candidate_name: Optional[str],
    company_name: str,
    interview_title: str,
    invite_url: str,
    expires_at: Optional[str]
) -> tuple:
    """Generate subject and body for a candidate interview invitation"""
    subject = f"Interview invitation: {interview_title} at {company_name}"
    candidate_name, company_name, interview_title = (
        escape(candidate_name or "there"), escape(company_name), escape(interview_title)
    )

    body = f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <style>{EMAIL_STYLES}</style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>You're invited to interview with {company_name}</h1>
    </div>
    <div class="content">
      <p>Hi <strong>{candidate_name}</strong>,</p>

      <p>You've been invited to complete an interview for the <strong>{interview_title}</strong> position at {company_name}. You can answer the questions at your own pace.</p>

      <div class="details">
        <div class="label">Position</div>
        <div class="value">{interview_title}</div>

        <div class="label">Link expires</div>
        <div class="value">{_format_expiry(expires_at)}</div>
      </div>

      <div style="text-align: center;">
        <a href="{invite_url}" class="cta-button">Start Interview</a>
      </div>

      <p>If the button does not work, copy this link into your browser:<br>{invite_url}</p>
    </div>
    <div class="footer">
      <p>This is an automated message from InterviewDesk on behalf of {company_name}</p>
    </div>
  </div>
</body>
</html>
    """

    return subject, body


def get_welcome_email_template(
    user_name: str,
    user_role: str,
    login_url: str,
    company_name: Optional[str] = None
) -> tuple:
    """Generate welcome email for a newly registered user"""
    subject = f"Welcome to InterviewDesk{f' - {company_name}' if company_name else ''}"
    user_name = escape(user_name)

    if user_role == "candidate":
        intro = "Your candidate account is ready. Use the invitation links you receive from employers to complete your interviews."
    else:
        intro = "Your account is ready. Finish onboarding to set up your company workspace, create interviews and invite candidates."

    body = f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <style>{EMAIL_STYLES}</style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>Welcome to InterviewDesk</h1>
    </div>
    <div class="content">
      <p>Dear <strong>{user_name}</strong>,</p>

      <p>{intro}</p>

      <div style="text-align: center;">
        <a href="{login_url}" class="cta-button">Sign in</a>
      </div>

      <p>Best regards,<br><strong>InterviewDesk Team</strong></p>
    </div>
    <div class="footer">
      <p>&copy; {datetime.now().year} InterviewDesk. All rights reserved.</p>
    </div>
  </div>
</body>
</html>
    """

    return subject, body


def get_team_invitation_email_template(
    email: str,
    role: str,
    company_name: str,
    login_url: str
) -> tuple:
    """Generate email telling an existing user they were added to a team"""
    subject = f"You've been added to {company_name} on InterviewDesk"
    email, role, company_name = escape(email), escape(role), escape(company_name)

    body = f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <style>{EMAIL_STYLES}</style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>Join {company_name}</h1>
    </div>
    <div class="content">
      <p>Hello,</p>

      <p>The account <strong>{email}</strong> has been added to the <strong>{company_name}</strong> workspace as <strong>{role}</strong>.</p>

      <div style="text-align: center;">
        <a href="{login_url}" class="cta-button">Open Dashboard</a>
      </div>
    </div>
    <div class="footer">
      <p>This is an automated message from InterviewDesk</p>
    </div>
  </div>
</body>
</html>
    """

    return subject, body


def get_password_reset_email_template(email: str, reset_url: str, expires_at: str) -> tuple:
    """Generate email with a one-time password reset link"""
    subject = "Reset your InterviewDesk password"
    email = escape(email)

    body = f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <style>{EMAIL_STYLES}</style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>Password Reset Request</h1>
    </div>
    <div class="content">
      <p>Hello,</p>

      <p>We received a request to reset the password for your account (<strong>{email}</strong>).</p>

      <div style="text-align: center;">
        <a href="{reset_url}" class="cta-button">Reset Password</a>
      </div>

      <div class="details">
        <div class="label">Link expires</div>
        <div class="value">{_format_expiry(expires_at)}</div>
      </div>

      <p>If you did not request a password reset, you can ignore this email. Your password will not change.</p>
    </div>
    <div class="footer">
      <p>This is an automated message from InterviewDesk</p>
    </div>
  </div>
</body>
</html>
    """

    return subject, body


async def send_invitation_email(
    email: str,
    candidate_name: Optional[str],
    company_name: str,
    interview_title: str,
    invite_url: str,
    expires_at: Optional[str]
) -> dict:
    """Send an interview invitation to a candidate"""
    subject, body = get_invitation_email_template(
        candidate_name=candidate_name,
        company_name=company_name,
        interview_title=interview_title,
        invite_url=invite_url,
        expires_at=expires_at
    )
    return await send_email(email, subject, body)


async def send_welcome_email(
    email: str,
    user_name: str,
    user_role: str,
    login_url: str,
    company_name: Optional[str] = None
) -> dict:
    subject, body = get_welcome_email_template(
        user_name=user_name,
        user_role=user_role,
        login_url=login_url,
        company_name=company_name
    )
    return await send_email(email, subject, body)


async def send_team_invitation_email(email: str, role: str, company_name: str, login_url: str) -> dict:
    subject, body = get_team_invitation_email_template(
        email=email,
        role=role,
        company_name=company_name,
        login_url=login_url
    )
    return await send_email(email, subject, body)


async def send_password_reset_email(email: str, reset_url: str, expires_at: str) -> dict:
    subject, body = get_password_reset_email_template(email=email, reset_url=reset_url, expires_at=expires_at)
    return await send_email(email, subject, body)
