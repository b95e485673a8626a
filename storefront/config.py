import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or (
        'dev-secret-key-change-in-production'
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or (
        'sqlite:///storefront.db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_FILE = os.environ.get('LOG_FILE', 'app.log')
    MAJOR_EVENTS_LOG = os.environ.get('MAJOR_EVENTS_LOG', 'major_events.log')

    # Shared secret for scheduled jobs hitting admin endpoints.
    # Sent as "Authorization: Bearer <secret>".
    CRON_SECRET = os.environ.get('CRON_SECRET', '')

    # Pagination configuration
    ITEMS_PER_PAGE = 20

    # Issues must be reported within this many days of delivery
    ISSUE_REPORTING_WINDOW_DAYS = int(
        os.environ.get('ISSUE_REPORTING_WINDOW_DAYS', '30')
    )
    # INFO_REQUESTED issues without a customer reply are closed after this
    STALE_ISSUE_DAYS = int(os.environ.get('STALE_ISSUE_DAYS', '14'))

    # UK VAT standard rate
    VAT_RATE = 0.20
    CURRENCY = 'GBP'
    SHIPPING_FLAT_RATE = float(os.environ.get('SHIPPING_FLAT_RATE', '3.99'))
