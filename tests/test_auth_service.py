"""
Auth service tests — password hashing and token claims.
"""

import unittest
from datetime import datetime, timedelta

from jose import jwt

from portal.config import settings
from portal.services.auth_service import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    normalize_email,
    read_access_token,
    verify_password,
)


class TestPasswords(unittest.TestCase):

    def test_hash_roundtrip(self):
        hashed = get_password_hash("motdepasse")
        self.assertNotEqual(hashed, "motdepasse")
        self.assertTrue(verify_password("motdepasse", hashed))
        self.assertFalse(verify_password("autre", hashed))

    def test_non_bcrypt_hash_is_rejected(self):
        self.assertFalse(verify_password("motdepasse", "plain-text"))


class TestTokens(unittest.TestCase):

    def test_claims_carry_role(self):
        token = create_access_token("user-1", "admin")
        claims = read_access_token(token)
        self.assertEqual(claims.user_id, "user-1")
        self.assertEqual(claims.role, "admin")
        self.assertEqual(decode_access_token(token), "user-1")

    def test_garbage_and_expired_tokens(self):
        self.assertIsNone(read_access_token("not-a-token"))

        expired = jwt.encode(
            {"sub": "user-1", "exp": datetime.utcnow() - timedelta(minutes=1)},
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
        self.assertIsNone(decode_access_token(expired))

    def test_token_without_subject(self):
        token = jwt.encode({"role": "admin"}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
        self.assertIsNone(read_access_token(token))

    def test_wrong_secret(self):
        token = jwt.encode({"sub": "user-1"}, "another-secret", algorithm=settings.jwt_algorithm)
        self.assertIsNone(read_access_token(token))


class TestEmail(unittest.TestCase):

    def test_normalize_email(self):
        self.assertEqual(normalize_email("  Citoyen@Rafiq.DZ "), "citoyen@rafiq.dz")


if __name__ == "__main__":
    unittest.main()
