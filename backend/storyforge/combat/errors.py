"""Combat engine errors."""


class NotFoundError(LookupError):
    """Raised when an encounter, participant, condition or loot id is unknown."""

    def __init__(self, kind: str, identifier: str, scope: str = "") -> None:
        self.kind = kind
        self.identifier = identifier
        self.scope = scope
        suffix = f" in {scope}" if scope else ""
        super().__init__(f"{kind.capitalize()} with ID {identifier} not found{suffix}")
