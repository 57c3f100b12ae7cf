import uuid

LISTING_PREFIX = "lst"
AUDIT_PREFIX = "aud"


def gen_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def new_listing_id() -> str:
    return gen_id(LISTING_PREFIX)


def new_audit_id() -> str:
    return gen_id(AUDIT_PREFIX)
