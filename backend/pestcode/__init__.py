# backend/pestcode/__init__.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from flask import Flask

from .config import Config
from .extensions import db, migrate
from .time_utils import utcnow


@dataclass
class Services:
    """The wired QR code engine; one set per session."""
    repository: object
    renderer: object
    allocator: object
    generator: object
    scanner: object
    masters: object


def build_services(session, config, clock: Callable = utcnow) -> Services:
    """
    Wire repository, renderer, allocator, generator, scan processor and
    master registry around one SQLAlchemy session.

    config is any mapping with the QR_* keys (app.config in the app).
    """
    from .services.qrcode_repository import QRCodeRepository
    from .services.qr_image import QRImageRenderer
    from .services.sequence_service import SequenceAllocator
    from .services.generation_service import QRCodeGenerator
    from .services.scan_service import ScanProcessor
    from .services.master_service import MasterService

    repository = QRCodeRepository(session)
    renderer = QRImageRenderer(
        box_size=config.get("QR_IMAGE_BOX_SIZE", 8),
        border=config.get("QR_IMAGE_BORDER", 2),
    )
    allocator = SequenceAllocator(
        repository,
        clock=clock,
        attempts=config.get("QR_ALLOCATION_ATTEMPTS", 5),
    )
    return Services(
        repository=repository,
        renderer=renderer,
        allocator=allocator,
        generator=QRCodeGenerator(repository, allocator, renderer, clock=clock),
        scanner=ScanProcessor(
            repository,
            clock=clock,
            year_window=config.get("QR_YEAR_WARNING_WINDOW", 5),
        ),
        masters=MasterService(repository),
    )


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # db.session is a scoped session, so one wired set serves every app context
    app.extensions["pestcode"] = build_services(db.session, app.config)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
