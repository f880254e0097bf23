import hashlib
import secrets
import string

ALPHABET = string.ascii_uppercase + string.digits


def gen_code(n: int = 8) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(n))


def generate_backup_codes(count: int = 8, length: int = 8) -> list[str]:
    """A batch of distinct recovery codes, shown to the user exactly once."""
    codes: list[str] = []
    while len(codes) < count:
        code = gen_code(length)
        if code not in codes:
            codes.append(code)
    return codes


def normalize_backup_code(code: str) -> str:
    return code.replace("-", "").replace(" ", "").strip().upper()


def hash_backup_code(code: str) -> str:
    return hashlib.sha256(normalize_backup_code(code).encode()).hexdigest()
