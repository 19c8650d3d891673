from fastapi import Depends, Header, HTTPException, Request, status

from portal_auth.context import AppContext
from portal_auth.services.auth import RequestMeta
from portal_auth.services.authorization import Predicate, Principal
from portal_auth.services.tokens import TokenError


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_request_meta(
    request: Request, context: AppContext = Depends(get_context)
) -> RequestMeta:
    ip_address = request.client.host if request.client else None
    if context.settings.trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for", "")
        if forwarded:
            ip_address = forwarded.split(",")[0].strip()
    return RequestMeta(
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
    )


def get_session_id(
    request: Request, context: AppContext = Depends(get_context)
) -> str | None:
    cookie = request.cookies.get(context.settings.session_cookie_name)
    return context.sessions.unsign(cookie)


def get_current_user_id(
    session_id: str | None = Depends(get_session_id),
    authorization: str | None = Header(default=None),
    context: AppContext = Depends(get_context),
) -> int:
    if session_id:
        user_id = context.sessions.get_user_id(session_id)
        if user_id is not None:
            return user_id
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header",
        )
    try:
        identity = context.tokens.authenticate(token.strip())
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    return identity.id


def get_current_principal(
    user_id: int = Depends(get_current_user_id),
    context: AppContext = Depends(get_context),
) -> Principal:
    user = context.users.get_user(user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return Principal.from_user(user)


def require(predicate: Predicate, detail: str):
    """Dependency that lets the request through only if ``predicate`` holds."""

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not predicate(principal):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
        return principal

    return dependency
