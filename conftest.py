import os

# Keep tests off any real database, broker or gateway secret
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LIVE_UPDATES_BACKEND", "memory")
os.environ.setdefault("MONNIFY_SECRET_KEY", "monnify-test-secret")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "paystack-test-secret")
