"""
Email Delivery for alerts.

The email channel is a placeholder: alerts may enable it, but no mail is
sent. Calls are logged so the channel's usage stays visible.
"""

import structlog

logger = structlog.get_logger()


async def send_alert_email(
    user_id: str,
    alert_name: str,
    severity: str,
    summary: str,
) -> bool:
    """
    Record an email delivery request for an alert evaluation.

    Returns True if an email was sent; always False in this deployment.
    """
    logger.info(
        "alert_email.skipped",
        user_id=user_id,
        alert_name=alert_name,
        severity=severity,
        summary=summary,
        reason="email_channel_not_configured",
    )
    return False
