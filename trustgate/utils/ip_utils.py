# trustgate/utils/ip_utils.py

from fastapi import Request


def get_client_ip(request: Request) -> str:
    """
    Extract real client IP (handles proxies/load balancers)
    """
    # Check common proxy headers
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    # Fallback to direct client
    return request.client.host if request.client else "unknown"
