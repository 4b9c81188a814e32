from django.contrib.auth.hashers import BCryptSHA256PasswordHasher


class BCryptPasswordHasher(BCryptSHA256PasswordHasher):
    """bcrypt with a fixed cost factor of 10."""

    algorithm = "bcrypt_sha256_10"
    rounds = 10
