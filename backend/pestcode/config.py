# backend/pestcode/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pestcode.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pestcode.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # QR image rendering (pixels per module, quiet-zone modules)
    QR_IMAGE_BOX_SIZE = int(os.environ.get("QR_IMAGE_BOX_SIZE", "8"))
    QR_IMAGE_BORDER = int(os.environ.get("QR_IMAGE_BORDER", "2"))

    # Codes whose year is further than this from the current year get a warning
    QR_YEAR_WARNING_WINDOW = int(os.environ.get("QR_YEAR_WARNING_WINDOW", "5"))

    # Retries for a sequence allocation that loses a concurrent update
    QR_ALLOCATION_ATTEMPTS = int(os.environ.get("QR_ALLOCATION_ATTEMPTS", "5"))
