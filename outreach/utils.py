import logging

from .models import Alert

logger = logging.getLogger(__name__)


def send_alert(message, severity='info'):
    """Persist an operator-visible alert and log it at the matching level"""
    Alert.objects.create(
        message=message,
        severity=severity,
    )
    if severity == 'critical':
        logger.critical(f"CRITICAL ALERT: {message}")
    elif severity == 'error':
        logger.error(f"ERROR ALERT: {message}")
    elif severity == 'warning':
        logger.warning(f"WARNING ALERT: {message}")
    else:
        logger.info(f"INFO ALERT: {message}")


def format_duration(seconds):
    """300 -> '5 minutes', 90 -> '90 seconds', 3600 -> '1 hour'"""
    seconds = int(seconds)
    if seconds >= 3600 and seconds % 3600 == 0:
        value, unit = seconds // 3600, "hour"
    elif seconds >= 60 and seconds % 60 == 0:
        value, unit = seconds // 60, "minute"
    else:
        value, unit = seconds, "second"
    return f"{value} {unit}{'' if value == 1 else 's'}"
