"""Helpers de autenticación del panel y enmascarado de secretos."""

import hmac


class OperatorAuthError(Exception):
    """El token del operador no coincide con el configurado."""


def verify_operator_token(expected: str | None, authorization: str | None) -> None:
    """Valida el header `Authorization: Bearer <token>` del panel.

    Sin token configurado no se exige autenticación (modo desarrollo).
    """
    if not expected:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise OperatorAuthError("Missing bearer token")
    if not hmac.compare_digest(token.strip(), expected):
        raise OperatorAuthError("Invalid operator token")


def mask_secret(value: str | None) -> str | None:
    """Enmascara secretos para logging seguro."""
    if not value:
        return value
    if len(value) <= 4:
        return "***"
    return f"{value[:2]}***{value[-2:]}"


def mask_phone(identity: str | None) -> str | None:
    """Oculta los dígitos intermedios de un handle telefónico (`447700900123@c.us`)."""
    if not identity:
        return identity
    number, sep, domain = identity.partition("@")
    if len(number) <= 6:
        return identity
    return f"{number[:4]}{'*' * (len(number) - 6)}{number[-2:]}{sep}{domain}"
