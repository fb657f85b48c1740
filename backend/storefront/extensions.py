# Overview: Flask extension instances for database, migrations and outbound integrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

from .services.payment_gateway import PaymentGateway
from .services.email_service import Mailer
from .services.notification_service import NotificationDispatcher

db = SQLAlchemy()
migrate = Migrate()
gateway = PaymentGateway()
mailer = Mailer()
notifier = NotificationDispatcher()
