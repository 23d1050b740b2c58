class AutomationError(Exception):
    """Base class for errors raised by the execution engine"""


class ResolutionError(AutomationError):
    """No locator (primary or fallback) resolved to an element"""

    def __init__(self, message: str, locators=None):
        super().__init__(message)
        self.locators = list(locators or [])


class BudgetExceededError(AutomationError):
    """The task ran out of interactions before the strategy finished"""

    def __init__(self, used: int, limit: int):
        super().__init__(f"Interaction budget exceeded ({used}/{limit})")
        self.used = used
        self.limit = limit


class StrategyTimeoutError(AutomationError):
    """A strategy attempt ran past its wall-clock limit"""


class PerceptionError(AutomationError):
    """The vision model gave no usable answer"""


class StrategyUnavailableError(AutomationError):
    """The strategy has nothing to work with for this task"""


class PatternStoreError(AutomationError):
    """Reading or writing the pattern repository failed"""
