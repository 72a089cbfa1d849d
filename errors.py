from typing import Optional


class OwnerRequired(ValueError):
    def __init__(self) -> None:
        super().__init__("An authenticated owner is required")


class NotFound(ValueError):
    pass


class ValidationFailed(ValueError):
    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        super().__init__(
            "; ".join(f"{field}: {message}" for field, message in self.errors.items())
        )


def require_owner(user_id: Optional[str]) -> str:
    owner = (user_id or "").strip()
    if not owner:
        raise OwnerRequired()
    return owner
