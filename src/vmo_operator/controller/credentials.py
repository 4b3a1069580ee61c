"""Basic-auth credentials of an instance, read from its secret."""

import base64
import binascii
import logging
from typing import Optional, Tuple

from ..exceptions import OperatorError
from .context import SyncContext

logger = logging.getLogger(__name__)

USERNAME_KEY = "username"
PASSWORD_KEY = "password"


def _decode(secret_name: str, data: dict, key: str) -> str:
    value = data.get(key)
    if not value:
        raise OperatorError(f"secret {secret_name} has no {key!r} entry")
    try:
        return base64.b64decode(value).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise OperatorError(f"secret {secret_name} entry {key!r} is not valid base64: {e}") from e


async def load_credentials(ctx: SyncContext) -> Optional[Tuple[str, str]]:
    """
    Read the username and password named by ``spec.secretsName``.

    The secret is only read, never written.

    Raises:
        NotFoundError: If the secret does not exist
        OperatorError: If an entry is missing or malformed
    """
    secret_name = ctx.instance.spec.secrets_name
    if not secret_name:
        ctx.credentials = None
        return None

    secret = await ctx.kube.read_secret(ctx.namespace, secret_name)
    data = secret.get("data") or {}
    ctx.credentials = (
        _decode(secret_name, data, USERNAME_KEY),
        _decode(secret_name, data, PASSWORD_KEY),
    )
    logger.debug("Loaded credentials for %s from %s", ctx.instance.key, secret_name)
    return ctx.credentials
