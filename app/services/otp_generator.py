import secrets

OTP_MIN = 100000
OTP_MAX = 999999


def generate_code() -> str:
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))
