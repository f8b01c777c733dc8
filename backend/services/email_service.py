from postmarker.core import PostmarkClient
from database import database
from models import MessageLog, EmailTemplateAlias, AuditAction
from utils.audit import create_audit_log
from datetime import datetime, timezone
import os
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

# Verified sender in Postmark
DEFAULT_SENDER = os.getenv("EMAIL_SENDER", "no-reply@dedoc.health")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

class EmailService:
    def __init__(self):
        postmark_token = os.getenv("POSTMARK_SERVER_TOKEN")
        if not postmark_token:
            logger.warning("POSTMARK_SERVER_TOKEN not set - emails will be logged but not sent")
            self.client = None
        else:
            self.client = PostmarkClient(server_token=postmark_token)
            logger.info("Postmark email client initialized")

    async def send_email(
        self,
        recipient: str,
        template_alias: EmailTemplateAlias,
        template_model: Dict[str, Any],
        user_id: Optional[str] = None,
        subject: str = "DeDoc"
    ) -> MessageLog:
        """Send an email with a built-in template. Failures are recorded, never raised."""
        message_log = MessageLog(
            user_id=user_id,
            recipient=recipient,
            template_alias=template_alias,
            subject=subject,
            status="queued"
        )

        try:
            if self.client:
                response = self.client.emails.send(
                    From=DEFAULT_SENDER,
                    To=recipient,
                    Subject=subject,
                    HtmlBody=self._build_html_body(template_alias, template_model),
                    TextBody=self._build_text_body(template_alias, template_model),
                    TrackOpens=True,
                    Tag=template_alias.value
                )

                message_log.postmark_message_id = response["MessageID"]
                message_log.status = "sent"
                message_log.sent_at = datetime.now(timezone.utc)
                logger.info(f"Email sent to {recipient}: {response['MessageID']}")
            else:
                # Dev mode - just log
                message_log.status = "sent"
                message_log.sent_at = datetime.now(timezone.utc)
                logger.info(f"[DEV MODE] Email logged (not sent) to {recipient}")

        except Exception as e:
            message_log.status = "failed"
            message_log.error_message = str(e)
            message_log.provider_error_type = type(e).__name__
            logger.error(f"Failed to send email to {recipient}: {e}")

        try:
            db = database.get_db()
            await db.message_logs.insert_one(message_log.model_dump())
        except Exception as e:
            logger.error(f"Failed to store message log for {recipient}: {e}")

        await create_audit_log(
            action=AuditAction.EMAIL_SENT if message_log.status == "sent" else AuditAction.EMAIL_FAILED,
            user_id=user_id,
            metadata={
                "template": template_alias.value,
                "status": message_log.status,
                "postmark_id": message_log.postmark_message_id,
                "error": message_log.error_message,
                "provider_error_type": message_log.provider_error_type,
            }
        )

        return message_log

    async def send_welcome_email(self, user: Dict[str, Any]) -> MessageLog:
        return await self.send_email(
            recipient=user["email"],
            template_alias=EmailTemplateAlias.WELCOME,
            template_model={
                "full_name": user.get("full_name") or user.get("username"),
                "username": user.get("username"),
                "login_link": f"{FRONTEND_URL}/login.html",
            },
            user_id=user.get("user_id"),
            subject="Welcome to DeDoc"
        )

    async def send_payment_receipt(self, user: Dict[str, Any], payment: Dict[str, Any]) -> MessageLog:
        end = payment.get("subscription_end")
        return await self.send_email(
            recipient=user["email"],
            template_alias=EmailTemplateAlias.PAYMENT_RECEIPT,
            template_model={
                "full_name": user.get("full_name") or user.get("username"),
                "plan": payment["plan"],
                "amount": payment["amount"],
                "reference": payment["reference"],
                "subscription_end": end.strftime("%d %b %Y, %H:%M UTC") if isinstance(end, datetime) else end,
                "dashboard_link": f"{FRONTEND_URL}/dashboard.html",
            },
            user_id=user.get("user_id"),
            subject=f"DeDoc payment receipt - {payment['plan'].title()} plan"
        )

    def _build_email_footer(self) -> str:
        return """
                <hr style="border: none; border-top: 1px solid #eee; margin: 30px 0;">
                <p style="color: #64748b; font-size: 13px;">
                    DeDoc - your AI health assistant.<br>
                    DeDoc does not replace professional medical advice.
                </p>
        """

    def _build_html_body(self, template_alias: EmailTemplateAlias, model: Dict[str, Any]) -> str:
        """Build HTML email body based on template type."""
        footer = self._build_email_footer()

        if template_alias == EmailTemplateAlias.WELCOME:
            return f"""
            <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
                <h1 style="color: #0f766e;">Welcome to DeDoc</h1>
                <p>Hello {model.get('full_name', 'there')},</p>
                <p>Your account <strong>{model.get('username', '')}</strong> has been created.
                   Choose a plan to unlock consultations, reports and emergency support.</p>
                <p style="margin: 30px 0;">
                    <a href="{model.get('login_link', '#')}"
                       style="background-color: #0f766e; color: white; padding: 12px 24px;
                              text-decoration: none; border-radius: 6px; display: inline-block;">
                        Sign in
                    </a>
                </p>
                {footer}
            </body>
            </html>
            """
        elif template_alias == EmailTemplateAlias.PAYMENT_RECEIPT:
            return f"""
            <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
                <h1 style="color: #0f766e;">Payment received</h1>
                <p>Hello {model.get('full_name', 'there')},</p>
                <p>Thank you. Your <strong>{model.get('plan', '')}</strong> subscription is now active.</p>
                <table style="border-collapse: collapse;">
                    <tr><td style="padding: 4px 12px 4px 0;">Amount</td><td>NGN {model.get('amount', '')}</td></tr>
                    <tr><td style="padding: 4px 12px 4px 0;">Reference</td><td style="font-family: monospace;">{model.get('reference', '')}</td></tr>
                    <tr><td style="padding: 4px 12px 4px 0;">Valid until</td><td>{model.get('subscription_end', '')}</td></tr>
                </table>
                <p style="margin: 30px 0;">
                    <a href="{model.get('dashboard_link', '#')}"
                       style="background-color: #0f766e; color: white; padding: 12px 24px;
                              text-decoration: none; border-radius: 6px; display: inline-block;">
                        Go to dashboard
                    </a>
                </p>
                {footer}
            </body>
            </html>
            """
        return f"<html><body>{footer}</body></html>"

    def _build_text_body(self, template_alias: EmailTemplateAlias, model: Dict[str, Any]) -> str:
        """Build plain text email body."""
        if template_alias == EmailTemplateAlias.WELCOME:
            return (
                f"Hello {model.get('full_name', 'there')},\n\n"
                f"Your DeDoc account {model.get('username', '')} has been created.\n"
                f"Sign in: {model.get('login_link', '')}\n"
            )
        elif template_alias == EmailTemplateAlias.PAYMENT_RECEIPT:
            return (
                f"Hello {model.get('full_name', 'there')},\n\n"
                f"Your {model.get('plan', '')} subscription is now active.\n"
                f"Amount: NGN {model.get('amount', '')}\n"
                f"Reference: {model.get('reference', '')}\n"
                f"Valid until: {model.get('subscription_end', '')}\n"
            )
        return "DeDoc"

email_service = EmailService()
