from storefront.adapters.mock_email import MockEmailAdapter
from storefront.adapters.mock_payment import MockPaymentAdapter


def build_payment_adapter(settings):
    if settings.PAYMENT_PROVIDER == "stripe":
        from storefront.adapters.stripe_payment import StripePaymentAdapter

        return StripePaymentAdapter(settings.STRIPE_SECRET_KEY)
    return MockPaymentAdapter(delay_ms=settings.PAYMENT_MOCK_DELAY_MS)


def build_email_adapter(settings):
    if settings.EMAIL_PROVIDER == "sendgrid":
        from storefront.adapters.sendgrid_email import SendGridEmailAdapter

        return SendGridEmailAdapter(
            settings.SENDGRID_API_KEY,
            from_email=settings.FROM_EMAIL,
            from_name=settings.FROM_NAME,
            template_id=settings.SENDGRID_ORDER_TEMPLATE_ID,
            tracking_template_id=settings.SENDGRID_TRACKING_TEMPLATE_ID,
        )
    return MockEmailAdapter()
