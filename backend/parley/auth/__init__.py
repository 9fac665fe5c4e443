"""Authentication module (bearer JWTs + bcrypt passwords).

Services:
    - IdentityGate: token issuance/verification and account checks.
"""
from .service import IdentityGate, extract_bearer

__all__ = ["IdentityGate", "extract_bearer"]
