"""
Monitoring and error tracking setup
"""
import logging
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

logger = logging.getLogger(__name__)


def init_monitoring(sentry_dsn: str = None, environment: str = "development") -> bool:
    """
    Initialize Sentry monitoring

    Args:
        sentry_dsn: Project DSN; monitoring stays off without one
        environment: Deployment environment name

    Returns:
        True when Sentry was initialized
    """
    if not sentry_dsn:
        logger.warning("Sentry DSN not configured, monitoring disabled")
        return False

    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=environment,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        # Sample every transaction in development, 10% elsewhere
        traces_sample_rate=1.0 if environment == "development" else 0.1,
    )
    logger.info(f"Sentry monitoring initialized for {environment}")
    return True


def capture_exception(error: Exception, context: dict = None):
    """
    Capture exception with context

    Args:
        error: Exception to capture
        context: Additional context
    """
    if context:
        sentry_sdk.set_context("custom", context)

    sentry_sdk.capture_exception(error)
