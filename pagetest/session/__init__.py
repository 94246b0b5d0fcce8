"""Session lifecycle: TestSession and the testsession() context manager."""

from pagetest.session.controller import SessionState, TestSession, testsession

__all__ = ["SessionState", "TestSession", "testsession"]
