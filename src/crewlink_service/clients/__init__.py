"""Clients for the payment processor and the email provider."""

from crewlink_service.clients.email_client import EmailClient
from crewlink_service.clients.stripe_gateway import StripeGateway

__all__ = ["EmailClient", "StripeGateway"]
