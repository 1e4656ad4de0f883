"""
Email templates for tenant billing events.

All templates have subject, HTML and plain text versions and are rendered
with ``str.format`` from a context dict built by the helpers below.
"""

from datetime import datetime
from typing import Any

from arkwork.billing.models import Plan, Tenant, WarningCandidate, WarningKind
from arkwork.billing.settings import settings

# Email template registry
EMAIL_TEMPLATES = {
    # Expiry warnings
    "trial_expiry_warning": {
        "subject": "Reminder: the {brand_name} trial for {tenant_name} ends in {left_text}",
        "html": """
            <p>Hello {tenant_name} team,</p>
            <p>This is a reminder that your <b>trial</b> ends in <b>{left_text}</b>
            (on {expiry_date}).</p>
            <p>Choose a paid plan before then to avoid any interruption.</p>
            <p>
                <a href="{dashboard_url}" style="background-color: #0070f3; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">
                    Choose a plan
                </a>
            </p>
            <p>{brand_name} Billing</p>
        """,
        "text": """
Hello {tenant_name} team,

This is a reminder that your trial ends in {left_text} (on {expiry_date}).
Choose a paid plan before then to avoid any interruption: {dashboard_url}

{brand_name} Billing
        """,
    },
    "premium_expiry_warning": {
        "subject": "Reminder: {brand_name} premium for {tenant_name} ends in {left_text}",
        "html": """
            <p>Hello {tenant_name} team,</p>
            <p>This is a reminder that your <b>premium subscription</b> ends in
            <b>{left_text}</b> (on {expiry_date}).</p>
            <p>Renew now to keep your job postings and premium features running.</p>
            <p>
                <a href="{dashboard_url}" style="background-color: #0070f3; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">
                    Renew subscription
                </a>
            </p>
            <p>{brand_name} Billing</p>
        """,
        "text": """
Hello {tenant_name} team,

This is a reminder that your premium subscription ends in {left_text} (on {expiry_date}).
Renew now to keep your job postings and premium features running: {dashboard_url}

{brand_name} Billing
        """,
    },
    # Lifecycle notices
    "trial_started": {
        "subject": "Your {brand_name} {plan_name} trial is active until {expiry_date}",
        "html": """
            <h2>Trial active</h2>
            <p>Hello {tenant_name} team,</p>
            <p>Your <b>{plan_name}</b> trial is active until <b>{expiry_date}</b>.</p>
            <p>Upgrade before it ends to keep premium features.</p>
        """,
        "text": """
Trial active

Hello {tenant_name} team,

Your {plan_name} trial is active until {expiry_date}.
Upgrade before it ends to keep premium features.
        """,
    },
    "premium_activated": {
        "subject": "Payment received: {brand_name} premium active until {expiry_date}",
        "html": """
            <h2>Payment successful</h2>
            <p>Hello {tenant_name} team,</p>
            <p>Your <b>{plan_name}</b> subscription is active until <b>{expiry_date}</b>.</p>
            <p>Thank you for subscribing to {brand_name}.</p>
        """,
        "text": """
Payment successful

Hello {tenant_name} team,

Your {plan_name} subscription is active until {expiry_date}.
Thank you for subscribing to {brand_name}.
        """,
    },
    "subscription_expired": {
        "subject": "Your {brand_name} access for {tenant_name} has ended",
        "html": """
            <p>Hello {tenant_name} team,</p>
            <p>Your {brand_name} access ended on <b>{expiry_date}</b>.</p>
            <p>You can renew at any time to restore premium features.</p>
            <p>
                <a href="{dashboard_url}" style="background-color: #0070f3; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">
                    Renew subscription
                </a>
            </p>
        """,
        "text": """
Hello {tenant_name} team,

Your {brand_name} access ended on {expiry_date}.
You can renew at any time to restore premium features: {dashboard_url}
        """,
    },
}

WARNING_TEMPLATES = {
    WarningKind.TRIAL: "trial_expiry_warning",
    WarningKind.PREMIUM: "premium_expiry_warning",
}


def render_template(template_name: str, context: dict[str, Any]) -> tuple[str, str, str]:
    """
    Render email template with context data.

    Args:
        template_name: Name of the template to render
        context: Dictionary of variables to interpolate

    Returns:
        Tuple of (subject, html_body, text_body)
    """
    if template_name not in EMAIL_TEMPLATES:
        raise ValueError(f"Unknown email template: {template_name}")

    template = EMAIL_TEMPLATES[template_name]

    subject = template["subject"].format(**context)
    html = template["html"].format(**context)
    text = template["text"].format(**context)

    return subject, html, text


def format_date(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%d %B %Y")


def _base_context(tenant_name: str) -> dict[str, Any]:
    return {
        "brand_name": settings.billing.brand_name,
        "dashboard_url": settings.billing.dashboard_url,
        "tenant_name": tenant_name or "your company",
    }


# Template context builders
def build_warning_context(candidate: WarningCandidate) -> dict[str, Any]:
    """Build context for the trial/premium expiry warnings"""
    left_text = "1 day" if candidate.days_left == 1 else f"{candidate.days_left} days"
    return {
        **_base_context(candidate.tenant_name),
        "left_text": left_text,
        "days_left": candidate.days_left,
        "expiry_date": format_date(candidate.warn_for_date),
    }


def build_trial_started_context(tenant: Tenant, plan: Plan) -> dict[str, Any]:
    return {
        **_base_context(tenant.display_name),
        "plan_name": plan.name or plan.id,
        "expiry_date": format_date(tenant.trial_ends_at),
    }


def build_premium_activated_context(tenant: Tenant, plan: Plan | None) -> dict[str, Any]:
    plan_name = (plan.name or plan.id) if plan else (tenant.current_plan_id or "premium")
    return {
        **_base_context(tenant.display_name),
        "plan_name": plan_name,
        "expiry_date": format_date(tenant.premium_until),
    }


def build_expired_context(tenant: Tenant, ended_at: datetime | None) -> dict[str, Any]:
    return {
        **_base_context(tenant.display_name),
        "expiry_date": format_date(ended_at),
    }
