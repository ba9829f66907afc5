import os

# Settings are read once per process; pin test values before timeclock.db builds its engine.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret-key-with-enough-length-0123456789")
os.environ.setdefault("SCHEMA_GUARD_STRICT", "false")
os.environ.setdefault("TIMECLOCK_TIMEZONE", "UTC")
