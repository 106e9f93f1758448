# Overview: Flask extension instances shared by models, services and the CLI.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()

# Schema changes ship as Alembic revisions under backend/migrations
migrate = Migrate(directory="migrations")
