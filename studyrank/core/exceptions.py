"""Error taxonomy shared by the services and routers."""


class StudyRankError(Exception):
    """Base class for every error raised by StudyRank services."""


class NotFoundError(StudyRankError):
    """An expected record is absent and there is no fetch-or-create fallback."""


class PersistenceError(StudyRankError):
    """The record store is unreachable or rejected a read/write."""


class DuplicateRecordError(PersistenceError):
    """A create hit a unique key that already exists."""


class ConcurrencyError(PersistenceError):
    """A compare-and-swap update kept losing to concurrent writers."""


class InvariantViolation(StudyRankError):
    """Stored data contradicts the catalog, e.g. a title naming a missing subject."""
