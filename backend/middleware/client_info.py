"""
Client Info
Who is calling: forwarded client IP, user agent, bot detection.
"""
import ipaddress
import re

from fastapi import Request

_BOT_UA_RE = re.compile(r"bot|spider|crawler|headless|lighthouse", re.IGNORECASE)


def get_client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer"""
    forwarded = request.headers.get("x-forwarded-for", "").strip()
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "0.0.0.0"


def get_user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "")


def is_bot_user_agent(user_agent: str) -> bool:
    return bool(user_agent) and bool(_BOT_UA_RE.search(user_agent))


def anonymize_ip(ip: str) -> str:
    """IPv4 -> last octet zeroed, IPv6 -> /48 prefix; unparseable -> empty"""
    try:
        addr = ipaddress.ip_address((ip or "").strip())
    except ValueError:
        return ""
    if addr.version == 4:
        return str(ipaddress.ip_network(f"{addr}/24", strict=False).network_address)
    return str(ipaddress.ip_network(f"{addr}/48", strict=False).network_address)
