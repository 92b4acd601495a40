from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request


def user_id_or_ip(request: Request) -> str:
    """
    Key function for SlowAPI.
    The bot front end forwards the chat user in X-User-Id; everything else
    is limited per client IP.
    """
    user_id = request.headers.get("X-User-Id")
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=user_id_or_ip)
