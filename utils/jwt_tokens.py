import uuid
from calendar import timegm

import jwt

ALG = "HS256"


def issue_session(account_id: int, role: str, device_id: int | None, secret: str, ttl, now):
    """Access token for an established session. ``now`` is naive UTC from the engine clock."""
    jti = uuid.uuid4().hex
    exp = now + ttl
    payload = {"sub": str(account_id), "role": role, "dev": device_id, "jti": jti, "type": "access", "exp": exp}
    token = jwt.encode(payload, secret, algorithm=ALG)
    return token, jti, exp


def decode_token(token: str, secret: str, now=None):
    # expiry is checked against the injected clock when one is given
    payload = jwt.decode(token, secret, algorithms=[ALG], options={"verify_exp": now is None})
    if now is not None and payload.get("exp", 0) < timegm(now.utctimetuple()):
        raise jwt.ExpiredSignatureError("Signature has expired")
    return payload
