import hashlib
from datetime import date

def is_iso_date(value) -> bool:
    if not isinstance(value, str) or len(value) != 10:
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True

def auth_token(password: str, secret: str) -> str:
    return hashlib.sha256(f'{password}:{secret}'.encode('utf-8')).hexdigest()
