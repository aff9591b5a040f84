class SessionNotFoundError(LookupError):
    def __init__(self, session_id: str):
        super().__init__(f"session_not_found: {session_id}")
        self.session_id = session_id


class SessionClosedError(RuntimeError):
    def __init__(self, session_id: str):
        super().__init__(f"session_ended: {session_id}")
        self.session_id = session_id
