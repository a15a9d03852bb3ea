from datetime import datetime, timedelta, timezone
from typing import Optional, Any
import uuid

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.config import settings

TOKEN_TYPE = "access"

# Password hashing context
pwd_context = CryptContext(
    schemes=["bcrypt"],
    default="bcrypt",
    deprecated="auto",
    bcrypt__rounds=12,
)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """
    Check a login password against an employee's stored hash.

    Employees created without a password (bulk or HR-created records) can
    never log in; a malformed hash counts as a mismatch.
    """
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(
    subject: str | uuid.UUID,
    role: Optional[str] = None,
    tenant_id: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[dict[str, Any]] = None,
) -> str:
    """
    Issue a signed access token.

    Args:
        subject: Employee id (or a platform admin label for PSA tokens)
        role: Employee role, or PSA for platform administrators
        tenant_id: Tenant the token is scoped to; PSA tokens carry none
        expires_delta: Lifetime, default ACCESS_TOKEN_EXPIRE_MINUTES
        additional_claims: Extra claims such as email
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    claims: dict[str, Any] = {
        "sub": str(subject),
        "exp": issued_at + lifetime,
        "iat": issued_at,
        "jti": str(uuid.uuid4()),
        "type": TOKEN_TYPE,
    }
    if role:
        claims["role"] = role
    if tenant_id:
        claims["tenant_id"] = str(tenant_id)
    if additional_claims:
        claims.update(additional_claims)

    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_access_token(token: str) -> Optional[dict[str, Any]]:
    """Claims of a valid, unexpired access token; None otherwise."""
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    if claims.get("type") != TOKEN_TYPE:
        return None
    return claims


def token_tenant_id(authorization: Optional[str]) -> Optional[str]:
    """tenant_id claim from an `Authorization: Bearer ...` header value, if any."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    claims = verify_access_token(authorization[7:].strip())
    if not claims or not claims.get("tenant_id"):
        return None
    return str(claims["tenant_id"])
