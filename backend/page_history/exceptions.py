class PageHistoryError(Exception):
    """Base class for page history errors"""


class UnmappedAccessLevel(PageHistoryError, ValueError):
    """A participation access symbol has no canonical access level"""

    def __init__(self, symbol):
        self.symbol = symbol
        super().__init__(f"No access level for participation access {symbol!r}")


class ImmutableEventType(PageHistoryError):
    """A stored history record cannot change its event type"""


class MailTransportError(PageHistoryError):
    """The mail transport is unavailable; the whole batch has to be retried"""
