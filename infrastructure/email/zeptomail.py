"""ZeptoMail implementation of EmailProvider.

Delivery failures are logged and reported as ``False``; they never raise
into the authentication flows.
"""

import os
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import EmailSettings
from infrastructure.http_client import HttpClient
from shared.logging import get_logger

log = get_logger(__name__)

_ZEPTO_API_URL = "https://api.zeptomail.com/v1.1/email"
_DEFAULT_TEMPLATE_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "templates",
    "emails",
)


class ZeptoMailProvider:
    def __init__(
        self,
        settings: EmailSettings,
        http_client: HttpClient,
        app_url: str = "http://localhost:8000",
        app_name: str = "stepgate",
        code_ttl_minutes: int = 10,
        template_dir: str = _DEFAULT_TEMPLATE_DIR,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._app_url = app_url
        self._app_name = app_name
        self._code_ttl_minutes = code_ttl_minutes
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
            log.error("email_send_failed", reason="token_not_configured")
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
            if response.status_code in (200, 201, 202):
                log.info("email_sent_success", to_email=to_email, subject=subject)
                return True
            log.error(
                "email_send_failed",
                to_email=to_email,
                subject=subject,
                status_code=response.status_code,
                response=response.text[:200],
            )
            return False
        except Exception as e:
            log.error(
                "email_send_error",
                to_email=to_email,
                subject=subject,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def _render(self, template_name: str, **context) -> str:
        template = self._jinja.get_template(template_name)
        return template.render(
            app_url=self._app_url,
            app_name=self._app_name,
            expires_minutes=self._code_ttl_minutes,
            **context,
        )

    def _code_text(self, heading: str, user_name: Optional[str], otp_code: str) -> str:
        return (
            f"{heading} - {self._app_name}\n\n"
            f"Hello{f' {user_name}' if user_name else ''},\n\n"
            f"Your code is: {otp_code}\n\n"
            f"This code expires in {self._code_ttl_minutes} minutes.\n"
        )

    async def send_verification_email(
        self, email: str, user_name: Optional[str], otp_code: str
    ) -> bool:
        subject = f"Confirm your email - {self._app_name}"
        html_body = self._render(
            "verification.html", otp_code=otp_code, user_name=user_name
        )
        text_body = self._code_text("Confirm Your Email", user_name, otp_code)
        return await self._send(email, user_name, subject, html_body, text_body)

    async def send_password_reset_email(
        self, email: str, user_name: Optional[str], otp_code: str
    ) -> bool:
        subject = f"Reset your password - {self._app_name}"
        html_body = self._render(
            "password_reset.html", otp_code=otp_code, user_name=user_name
        )
        text_body = self._code_text("Reset Your Password", user_name, otp_code)
        return await self._send(email, user_name, subject, html_body, text_body)

    async def send_email_change_email(
        self, new_email: str, user_name: Optional[str], otp_code: str
    ) -> bool:
        subject = f"Confirm your new email - {self._app_name}"
        html_body = self._render(
            "email_change.html", otp_code=otp_code, user_name=user_name
        )
        text_body = self._code_text("Confirm Your New Email", user_name, otp_code)
        return await self._send(new_email, user_name, subject, html_body, text_body)

    async def send_email_change_notice(
        self, old_email: str, user_name: Optional[str], new_email: str
    ) -> bool:
        subject = f"Your email was changed - {self._app_name}"
        html_body = self._render(
            "email_change_notice.html", new_email=new_email, user_name=user_name
        )
        text_body = (
            f"Email Changed - {self._app_name}\n\n"
            f"The email address on your account is now {new_email}.\n"
            f"If you did not make this change, contact support immediately.\n"
        )
        return await self._send(old_email, user_name, subject, html_body, text_body)
