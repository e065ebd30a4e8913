# apps/recengine/errors.py
class EngineError(Exception):
    pass


class NotFoundError(EngineError):
    def __init__(self, kind: str, entity_id):
        super().__init__(f"{kind} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class UpstreamUnavailable(EngineError):
    """Ranking service timed out, errored, or sent an unreadable body."""


class PersistenceFailure(EngineError):
    pass
