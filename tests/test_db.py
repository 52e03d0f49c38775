from productsense.db import sessions


class RecordingSession:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


def test_logger_is_module_scoped():
    assert sessions.logger.name == "productsense.db.sessions"


def test_get_db_closes_session(monkeypatch):
    opened = RecordingSession()
    monkeypatch.setattr(sessions, "SessionLocal", lambda: opened)

    dependency = sessions.get_db()
    assert next(dependency) is opened
    assert not opened.closed
    dependency.close()
    assert opened.closed
