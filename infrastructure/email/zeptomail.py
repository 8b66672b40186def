"""ZeptoMail implementation of EmailProvider.

Messages are rendered from the Jinja2 templates in templates/emails and sent
through the ZeptoMail HTTP API. Links embedded in the messages point at the
API (token redemption endpoints) or at the frontend (pages that collect
input before redeeming).
"""

import os
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import EmailSettings, TokenSettings
from infrastructure.http_client import HttpClient
from shared.logging import get_logger

log = get_logger(__name__)

_ZEPTO_API_URL = "https://api.zeptomail.in/v1.1/email"
_DEFAULT_TEMPLATE_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "templates",
    "emails",
)
_FOOTER = "Fitness Tracker. You received this because this address was used to sign up."


def _hours(seconds: int) -> int:
    return max(1, seconds // 3600)


class ZeptoMailProvider:
    def __init__(
        self,
        settings: EmailSettings,
        http_client: HttpClient,
        app_url: str,
        frontend_url: str,
        tokens: Optional[TokenSettings] = None,
        template_dir: str = _DEFAULT_TEMPLATE_DIR,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._app_url = app_url.rstrip("/")
        self._frontend_url = frontend_url.rstrip("/")
        self._tokens = tokens or TokenSettings()
        self._jinja = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=select_autoescape(["html", "xml"]),
        )

    async def _send(
        self,
        to_email: str,
        to_name: Optional[str],
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        if not self._settings.zepto_api_token:
            log.error("zepto_mail_send_failed", reason="token_not_configured")
            return False

        payload: dict = {
            "from": {
                "address": self._settings.zepto_from_email,
                "name": self._settings.zepto_from_name,
            },
            "to": [
                {
                    "email_address": {
                        "address": to_email,
                        "name": to_name or to_email,
                    }
                }
            ],
            "subject": subject,
            "htmlbody": html_body,
        }
        if text_body:
            payload["textbody"] = text_body

        token = self._settings.zepto_api_token
        if not token.startswith("Zoho-enczapikey "):
            token = f"Zoho-enczapikey {token}"

        headers = {"Authorization": token, "Content-Type": "application/json"}

        try:
            response = await self._http.post(
                _ZEPTO_API_URL, json=payload, headers=headers
            )
        except Exception as e:
            log.error(
                "email_send_error",
                to_email=to_email,
                subject=subject,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        if response.status_code in (200, 201, 202):
            log.info("email_sent_success", to_email=to_email, subject=subject)
            return True
        log.error(
            "email_sent_failed",
            to_email=to_email,
            subject=subject,
            status_code=response.status_code,
            response=response.text[:200],
        )
        return False

    def _render(self, template_name: str, **context) -> str:
        template = self._jinja.get_template(template_name)
        return template.render(
            app_url=self._app_url, frontend_url=self._frontend_url, **context
        )

    # ── Registration ─────────────────────────────────────────────────────────

    def registration_link(self, token: str) -> str:
        return f"{self._app_url}/auth/verify-token/{token}"

    async def send_registration_email(self, email: str, token: str) -> bool:
        subject = "Confirm your email - Fitness Tracker"
        link = self.registration_link(token)
        hours = _hours(self._tokens.registration_token_ttl_seconds)
        html_body = self._render("registration.html", link=link, expires_hours=hours)
        text_body = (
            f"Confirm your email - Fitness Tracker\n\n"
            f"Open this link to continue creating your account:\n{link}\n\n"
            f"The link expires in {hours} hours.\n\n"
            f"{_FOOTER}"
        )
        return await self._send(email, None, subject, html_body, text_body)

    async def send_resend_email(self, email: str, token: str) -> bool:
        subject = "Your new sign-up link - Fitness Tracker"
        link = self.registration_link(token)
        hours = _hours(self._tokens.registration_token_ttl_seconds)
        html_body = self._render(
            "resend_registration.html", link=link, expires_hours=hours
        )
        text_body = (
            f"Finish creating your account - Fitness Tracker\n\n"
            f"Here is a new link; earlier links no longer work:\n{link}\n\n"
            f"The link expires in {hours} hours.\n\n"
            f"{_FOOTER}"
        )
        return await self._send(email, None, subject, html_body, text_body)

    async def send_welcome_email(self, email: str, user_name: Optional[str]) -> bool:
        subject = "Welcome to Fitness Tracker!"
        dashboard = f"{self._frontend_url}/dashboard"
        html_body = self._render("welcome.html", user_name=user_name, link=dashboard)
        text_body = (
            f"Welcome to Fitness Tracker{f', {user_name}' if user_name else ''}!\n\n"
            f"Start logging your workouts: {dashboard}\n\n"
            f"{_FOOTER}"
        )
        return await self._send(email, user_name, subject, html_body, text_body)

    # ── Account maintenance ──────────────────────────────────────────────────

    async def send_password_reset_email(
        self, email: str, user_name: Optional[str], token: str
    ) -> bool:
        subject = "Reset your password - Fitness Tracker"
        link = f"{self._frontend_url}/reset-password/{token}"
        minutes = max(1, self._tokens.reset_token_ttl_seconds // 60)
        html_body = self._render(
            "password_reset.html",
            user_name=user_name,
            link=link,
            expires_minutes=minutes,
        )
        text_body = (
            f"Reset your password - Fitness Tracker\n\n"
            f"Hello{f' {user_name}' if user_name else ''},\n\n"
            f"Open this link to choose a new password:\n{link}\n\n"
            f"The link expires in {minutes} minutes. "
            f"If you did not ask for a reset, ignore this email.\n\n"
            f"{_FOOTER}"
        )
        return await self._send(email, user_name, subject, html_body, text_body)

    async def send_verification_email(
        self, email: str, user_name: Optional[str], token: str
    ) -> bool:
        subject = "Verify your email - Fitness Tracker"
        link = f"{self._app_url}/auth/verify-email/{token}"
        hours = _hours(self._tokens.registration_token_ttl_seconds)
        html_body = self._render(
            "verification.html", user_name=user_name, link=link, expires_hours=hours
        )
        text_body = (
            f"Verify your email - Fitness Tracker\n\n"
            f"Hello{f' {user_name}' if user_name else ''},\n\n"
            f"Confirm this address by opening:\n{link}\n\n"
            f"The link expires in {hours} hours.\n\n"
            f"{_FOOTER}"
        )
        return await self._send(email, user_name, subject, html_body, text_body)
