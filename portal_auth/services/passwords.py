import bcrypt


class PasswordHasher:
    """Salted bcrypt hashing for stored credentials."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def verify(self, hashed_password: str, password: str) -> bool:
        if not hashed_password:
            return False
        try:
            return bcrypt.checkpw(
                password.encode("utf-8"), hashed_password.encode("utf-8")
            )
        except ValueError:
            # Malformed hash in storage.
            return False
