"""Rivalry Engine — exception types."""


class RivalryError(Exception):
    """Base class for rivalry engine errors."""


class UnknownPersonalityError(RivalryError, ValueError):
    pass


class RivalNotFoundError(RivalryError, LookupError):
    pass


class RivalLimitError(RivalryError):
    pass


class DuplicateEncounterError(RivalryError):
    """An encounter for this rival and period was already recorded."""

    def __init__(self, rival_id: str, period_key: str):
        super().__init__(f"Encounter for rival {rival_id} in period {period_key} already recorded")
        self.rival_id = rival_id
        self.period_key = period_key


class NoWorkoutsError(RivalryError):
    pass
