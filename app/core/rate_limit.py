"""
Rate limiting configuration for the API
"""
from slowapi import Limiter
from fastapi import Request


def get_client_ip(request: Request) -> str:
    """
    Extract client IP from request, checking for proxy headers first
    """
    # Check common proxy headers
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # X-Forwarded-For can contain multiple IPs, take the first
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    # Fall back to direct connection
    if request.client:
        return request.client.host

    return "unknown"


# Create limiter instance
limiter = Limiter(key_func=get_client_ip)

# Canjes y regalos mueven puntos: límite estricto
REDEEM_RATE_LIMIT = "10/minute"
GIFT_CLAIM_RATE_LIMIT = "5/minute"

# Operaciones administrativas (ajustes, cambios de estado, sync)
ADMIN_WRITE_RATE_LIMIT = "60/minute"

# Automatizaciones del CRM
WEBHOOK_RATE_LIMIT = "120/minute"

# Lecturas
READ_RATE_LIMIT = "100/minute"
