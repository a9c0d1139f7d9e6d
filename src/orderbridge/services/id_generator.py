"""Prefixed ID generation utility."""

import uuid


def generate_id(prefix: str) -> str:
    """Generate a prefixed unique ID such as ``"dlv_a1b2c3d4e5f6a7b8"``.

    Prefixes in use: ``whk_``, ``wlog_``, ``ord_``, ``cus_``, ``dlv_``,
    ``int_``, ``rjob_``.
    """
    return f"{prefix}{uuid.uuid4().hex[:16]}"
