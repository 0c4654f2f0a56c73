from fastapi import Request


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_actor(request: Request) -> str | None:
    # Set by the console shell in front of this service.
    actor = request.headers.get('x-actor', '').strip()
    return actor or None
