import smtplib
import ssl
import re
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional, Dict, Any
from pathlib import Path
import logging

from jinja2 import Environment, FileSystemLoader, select_autoescape
from twilio.rest import Client as TwilioClient

from app.core.config import settings
from app.common.utils import utc_now, timestamp_reference
from app.modules.receipts.builder import render_html, render_plain_text
from app.modules.receipts.models import DeliveryStatus

logger = logging.getLogger(__name__)

SRI_LANKA_MOBILE = re.compile(r"^(?:\+94|0)?7\d{8}$")
SMS_MAX_LENGTH = 160


def normalize_phone(phone: str) -> str:
    """Normalize a Sri Lankan mobile number to +947XXXXXXXX."""
    digits = re.sub(r"[\s\-()]", "", phone or "")
    if digits.startswith("0094"):
        digits = "+" + digits[2:]
    elif digits.startswith("94") and len(digits) == 11:
        digits = "+" + digits
    if not SRI_LANKA_MOBILE.match(digits):
        raise ValueError(f"Invalid Sri Lankan mobile number: {phone}")
    return "+94" + digits[-9:]


def is_valid_phone(phone: str) -> bool:
    try:
        normalize_phone(phone)
        return True
    except ValueError:
        return False


class EmailService:
    """
    SMTP email with Jinja2 templates.
    """

    def __init__(self):
        self.smtp_server = settings.EMAIL_SMTP_SERVER
        self.smtp_port = settings.EMAIL_SMTP_PORT
        self.username = settings.EMAIL_USERNAME
        self.password = settings.EMAIL_PASSWORD
        self.use_tls = settings.EMAIL_USE_TLS
        self.from_email = settings.EMAIL_FROM or settings.EMAIL_USERNAME
        self.from_name = settings.EMAIL_FROM_NAME

        self.jinja_env = Environment(
            loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
            autoescape=select_autoescape(['html', 'xml'])
        )

    def _create_smtp_connection(self):
        try:
            if self.use_tls:
                context = ssl.create_default_context()
                server = smtplib.SMTP(self.smtp_server, self.smtp_port)
                server.starttls(context=context)
            else:
                server = smtplib.SMTP_SSL(self.smtp_server, self.smtp_port)

            if self.username:
                server.login(self.username, self.password)
            return server
        except Exception as e:
            logger.error(f"Error creating SMTP connection: {str(e)}")
            raise

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        template = self.jinja_env.get_template(template_name)
        return template.render(**context)

    def send_email(self, to_email: str, subject: str, html_content: str, text_content: Optional[str] = None) -> bool:
        """
        Send one email.

        Returns:
            True when the SMTP server accepted it, False otherwise
        """
        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = subject
            msg['From'] = f"{self.from_name} <{self.from_email}>"
            msg['To'] = to_email

            if text_content:
                msg.attach(MIMEText(text_content, 'plain', 'utf-8'))
            msg.attach(MIMEText(html_content, 'html', 'utf-8'))

            with self._create_smtp_connection() as server:
                server.sendmail(self.from_email, [to_email], msg.as_string())

            logger.info(f"Email sent successfully to {to_email}")
            return True

        except Exception as e:
            logger.error(f"Error sending email: {str(e)}")
            return False

    def send_receipt_email(self, to_email: str, template: Dict[str, Any], receipt_html: str,
                           receipt_text: Optional[str] = None) -> bool:
        subject = (
            f"{template['header']['title']} {template['receipt_info']['receipt_no']} - "
            f"{template['company_info']['name']}"
        )
        html_content = self.render_template("receipt_email.html", {
            "restaurant_name": template["company_info"]["name"],
            "receipt_number": template["receipt_info"]["receipt_no"],
            "total": template["calculations"]["total"]["amount"],
            "receipt_html": receipt_html,
        })
        return self.send_email(to_email, subject, html_content, receipt_text)


class SMSService:
    """Receipt text messages through the configured provider"""

    def __init__(self, provider: Optional[str] = None):
        self.provider = (provider or settings.SMS_PROVIDER).lower()

    @staticmethod
    def build_receipt_message(template: Dict[str, Any]) -> str:
        info = template["receipt_info"]
        message = (
            f"{template['company_info']['name']}\n"
            f"Receipt: {info['receipt_no']}\n"
            f"Total: {template['calculations']['total']['amount']}\n"
            f"Date: {info['date']} {info['time']}\n"
            f"Thank you!"
        )
        return message[:SMS_MAX_LENGTH]

    def _send_twilio(self, phone: str, message: str) -> str:
        if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN:
            raise RuntimeError("Twilio credentials not configured")
        client = TwilioClient(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
        result = client.messages.create(body=message, from_=settings.TWILIO_PHONE_NUMBER, to=phone)
        return result.sid

    def send_sms(self, phone: str, message: str) -> Dict[str, Any]:
        try:
            phone = normalize_phone(phone)
        except ValueError as e:
            return {"success": False, "message_id": None, "error": str(e)}

        try:
            if self.provider == "twilio":
                message_id = self._send_twilio(phone, message)
            elif self.provider == "simulated":
                message_id = timestamp_reference("SMS")
                logger.info(f"[simulated SMS from {settings.SMS_SENDER_ID}] to {phone}: {message}")
            else:
                raise RuntimeError(f"Unknown SMS provider: {self.provider}")
            logger.info(f"SMS sent to {phone} ({message_id})")
            return {"success": True, "message_id": message_id, "error": None}
        except Exception as e:
            logger.error(f"Error sending SMS to {phone}: {str(e)}")
            return {"success": False, "message_id": None, "error": str(e)}

    def send_receipt_sms(self, phone: str, template: Dict[str, Any]) -> Dict[str, Any]:
        return self.send_sms(phone, self.build_receipt_message(template))


class NotificationService:
    """Delivers receipts by email or SMS and records the attempt on the receipt"""

    def __init__(self, email_service: Optional[EmailService] = None, sms_service: Optional[SMSService] = None):
        self.email_service = email_service or EmailService()
        self.sms_service = sms_service or SMSService()

    def deliver_receipt(self, receipt, method: str, recipient: str) -> Dict[str, Any]:
        """
        Send a receipt and stamp delivery status, attempts and error on it.

        The caller commits.
        """
        template = receipt.receipt_data["template"]
        receipt.delivery_attempts = (receipt.delivery_attempts or 0) + 1
        receipt.last_delivery_attempt = utc_now()
        receipt.delivery_method = method

        if method == "email":
            receipt.recipient_email = recipient
            sent = self.email_service.send_receipt_email(
                recipient, template, render_html(template), render_plain_text(template)
            )
            result = {"success": sent, "message_id": None, "error": None if sent else "Email delivery failed"}
        elif method == "sms":
            receipt.recipient_phone = recipient
            result = self.sms_service.send_receipt_sms(recipient, template)
        else:
            result = {"success": False, "message_id": None, "error": f"Unsupported delivery method: {method}"}

        if result["success"]:
            receipt.delivery_status = DeliveryStatus.SENT
            receipt.delivery_error = None
        else:
            receipt.delivery_status = DeliveryStatus.FAILED
            receipt.delivery_error = result["error"]
            logger.warning(f"Receipt {receipt.receipt_number} {method} delivery failed: {result['error']}")
        return result
